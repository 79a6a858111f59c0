"""Classroom and student bootstrap."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from common.codes import generate_unique_code
from common.errors import ConflictError, NotFound, ValidationError
from common.money import money
from ledger.entities import MacroEntities
from ledger.models import Account, AccountKind, Classroom, Student

logger = logging.getLogger(__name__)

MIN_CREDIT_SCORE = 350
MAX_CREDIT_SCORE = 850


def clamp_credit_score(score: int) -> int:
    return max(MIN_CREDIT_SCORE, min(MAX_CREDIT_SCORE, score))


class ClassroomService:
    def __init__(self, session: Session, teacher_id: str):
        self.session = session
        self.teacher_id = teacher_id

    # ------------------------------------------------------------------
    def classroom(self) -> Optional[Classroom]:
        return self.session.exec(
            select(Classroom).where(Classroom.teacher_id == self.teacher_id)
        ).first()

    def initialize(self, name: str = "") -> Classroom:
        """Create the classroom with a unique join code and its macro entities.

        Calling it again keeps the existing code and only adds missing entities.
        """
        classroom = self.classroom()
        if classroom is None:
            classroom = generate_unique_code(
                self.session,
                lambda code: Classroom(teacher_id=self.teacher_id, code=code, name=name),
            )
            logger.info("classroom created", extra={"teacher_id": self.teacher_id})
        MacroEntities(self.session, self.teacher_id).initialize()
        return classroom

    # ------------------------------------------------------------------
    def create_student(
        self,
        name: str,
        *,
        student_code: Optional[str] = None,
        weekly_allowance: Decimal = Decimal("0"),
        credit_score: int = 700,
    ) -> Student:
        """Create a student with empty checking, savings and investment accounts."""
        if not name.strip():
            raise ValidationError("student name is required")
        if money(weekly_allowance) < 0:
            raise ValidationError("weekly allowance cannot be negative")
        if not MIN_CREDIT_SCORE <= credit_score <= MAX_CREDIT_SCORE:
            raise ValidationError("credit score must be between 350 and 850")

        def build(code: str) -> Student:
            return Student(
                teacher_id=self.teacher_id,
                student_code=code,
                name=name.strip(),
                weekly_allowance=money(weekly_allowance),
                credit_score=credit_score,
            )

        if student_code is None:
            student = generate_unique_code(self.session, build, length=5)
        else:
            student = build(student_code)
            try:
                with self.session.begin_nested():
                    self.session.add(student)
                    self.session.flush()
            except IntegrityError as exc:
                raise ConflictError("student code already in use", student_code=student_code) from exc

        for kind in AccountKind:
            self.session.add(Account(student_id=student.id, kind=kind.value, balance=Decimal("0")))
        self.session.flush()
        logger.info("student created", extra={"teacher_id": self.teacher_id, "student_id": student.id})
        return student

    def student(self, student_id: str) -> Student:
        student = self.session.get(Student, student_id)
        if student is None or student.teacher_id != self.teacher_id:
            raise NotFound("student not found", student_id=student_id)
        return student

    def active_students(self) -> List[Student]:
        return list(
            self.session.exec(
                select(Student)
                .where(Student.teacher_id == self.teacher_id, Student.is_active == True)  # noqa: E712
                .order_by(Student.created_at)
            ).all()
        )

    def adjust_credit_score(self, student_id: str, adjustment: int) -> Student:
        """Add *adjustment* and clamp to 350..850."""
        student = self.student(student_id)
        previous = student.credit_score
        student.credit_score = clamp_credit_score(previous + adjustment)
        self.session.add(student)
        self.session.flush()
        logger.info(
            "credit score %d -> %d",
            previous,
            student.credit_score,
            extra={"teacher_id": self.teacher_id, "student_id": student_id},
        )
        return student

    def set_active(self, student_id: str, active: bool) -> Student:
        student = self.student(student_id)
        student.is_active = active
        self.session.add(student)
        self.session.flush()
        return student

    def update_student(
        self,
        student_id: str,
        *,
        name: Optional[str] = None,
        weekly_allowance: Optional[Decimal] = None,
        credit_score: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> Student:
        """Change profile fields; ``None`` leaves a field as it is.

        Balances are not editable here, money only moves through the ledger.
        Inactive students drop out of the seat price and cannot receive transfers.
        """
        student = self.student(student_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("student name is required")
            student.name = name.strip()
        if weekly_allowance is not None:
            if money(weekly_allowance) < 0:
                raise ValidationError("weekly allowance cannot be negative")
            student.weekly_allowance = money(weekly_allowance)
        if credit_score is not None:
            if not MIN_CREDIT_SCORE <= credit_score <= MAX_CREDIT_SCORE:
                raise ValidationError("credit score must be between 350 and 850")
            student.credit_score = credit_score
        self.session.add(student)
        self.session.flush()
        if is_active is not None and is_active != student.is_active:
            student = self.set_active(student_id, is_active)
            logger.info(
                "student %s",
                "reactivated" if is_active else "deactivated",
                extra={"teacher_id": self.teacher_id, "student_id": student_id},
            )
        return student
