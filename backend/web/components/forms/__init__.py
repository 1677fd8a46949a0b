"""
Form components for EventDesk.

Provides the field building blocks used by the sign-in, registration and
role-change forms.
"""

from .fields import FormField, TextInputField, SelectField, FileUploadField, SubmitButton

__all__ = [
    "FormField",
    "TextInputField",
    "SelectField",
    "FileUploadField",
    "SubmitButton",
]
