import pytest
from sqlalchemy import CheckConstraint, ForeignKeyConstraint

from app.db.base import Base
from app.models.borrower import Borrower
from app.models.loan_application import LoanApplication
from app.models.loan_status_history import LoanStatusHistory
from app.models.types import EncryptedString


def _check_names(model) -> set[str]:
    return {c.name for c in model.__table__.constraints if isinstance(c, CheckConstraint)}


def test_every_table_is_registered() -> None:
    assert set(Base.metadata.tables) >= {
        "roles",
        "users",
        "user_sessions",
        "borrowers",
        "loan_programs",
        "loan_applications",
        "loan_status_history",
        "documents",
        "workflow_tasks",
        "notifications",
        "activities",
    }


def test_loan_application_constraints() -> None:
    assert _check_names(LoanApplication) >= {
        "ck_loan_app_amount_range",
        "ck_loan_app_term",
        "ck_loan_app_status",
        "ck_loan_app_version_positive",
    }
    assert LoanApplication.__table__.c.loan_number.unique is True
    assert LoanApplication.__mapper__.version_id_col is LoanApplication.__table__.c.version


def test_history_cascades_with_application() -> None:
    fks = [c for c in LoanStatusHistory.__table__.constraints if isinstance(c, ForeignKeyConstraint)]
    loan_fk = next(fk for fk in fks if fk.referred_table.name == "loan_applications")
    assert loan_fk.ondelete == "CASCADE"


def test_borrower_phone_is_encrypted_column() -> None:
    assert isinstance(Borrower.__table__.c.phone.type, EncryptedString)
    assert "ck_borrower_income_nonneg" in _check_names(Borrower)


def test_encrypted_string_round_trip() -> None:
    enc = EncryptedString(secret="test-secret-key-1234567890abcdef")
    token = enc.process_bind_param("555-0100", None)
    assert token is not None
    assert b"555-0100" not in token
    assert enc.process_result_value(token, None) == "555-0100"
    assert enc.process_bind_param(None, None) is None


def test_encrypted_string_rejects_foreign_key_material() -> None:
    token = EncryptedString(secret="first-secret").process_bind_param("555-0100", None)
    with pytest.raises(ValueError, match="Unable to decrypt"):
        EncryptedString(secret="second-secret").process_result_value(token, None)
