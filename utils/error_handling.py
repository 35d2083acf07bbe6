"""
Centralized error handling utilities for consistent error responses
"""

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session
from typing import Any

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("errors")


class ConflictError(Exception):
    """Raised when a write collides with existing data (already enrolled, already earned)"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamServiceError(Exception):
    """Raised when an optional dependent service (LLM provider) fails"""

    pass


def handle_database_error(e: Exception, operation: str = "database operation") -> None:
    """
    Handle database errors consistently across the application

    Args:
        e: The exception that occurred
        operation: Description of the operation that failed
    """
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, IntegrityError):
        logger.warning(f"Database integrity error during {operation}: {str(e)}", category=LogCategory.DATABASE)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Data integrity constraint violated. This operation conflicts with existing data.",
        )
    elif isinstance(e, SQLAlchemyError):
        logger.error(f"Database error during {operation}", category=LogCategory.DATABASE, exception=e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database operation failed. Please try again later.",
        )
    else:
        logger.error(f"Unexpected error during {operation}", exception=e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred. Please try again later.",
        )


def safe_database_operation(db: Session, operation_name: str):
    """
    Context manager for safe database operations with automatic rollback

    Usage:
        with safe_database_operation(db, "create session"):
            db.add(session)
            db.commit()
    """

    class DatabaseOperationContext:
        def __init__(self, db: Session, operation_name: str):
            self.db = db
            self.operation_name = operation_name

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            if exc_type:
                self.db.rollback()
                handle_database_error(exc_val, self.operation_name)
            return False

    return DatabaseOperationContext(db, operation_name)


def validate_resource_exists(resource: Any, resource_name: str, resource_id: Any) -> None:
    """
    Validate that a resource exists, raise 404 if not

    Args:
        resource: The resource object (None if not found)
        resource_name: Name of the resource for error message
        resource_id: ID of the resource that was searched for
    """
    if not resource:
        logger.warning(f"{resource_name} not found: {resource_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource_name} not found")


def validation_error(message: str) -> HTTPException:
    """400 for payloads rejected before any write"""
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def conflict_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=message)


def log_operation_success(operation: str, **kwargs) -> None:
    """Log successful operations for audit purposes"""
    logger.info(f"Operation successful: {operation}", category=LogCategory.BUSINESS, **kwargs)


def format_validation_errors(errors: list) -> list:
    """Flatten pydantic error dicts into field/message/code entries"""
    return [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "code": error.get("type", "validation_error"),
        }
        for error in errors
    ]
