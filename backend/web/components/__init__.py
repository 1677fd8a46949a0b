# EventDesk Component System
# Pure Python Components for HTML generation

from .base import Component
from .layout import Layout
from .navigation import Navigation
from .forms import FormField, TextInputField, SelectField, FileUploadField, SubmitButton

__all__ = [
    "Component",
    "Layout",
    "Navigation",
    "FormField",
    "TextInputField",
    "SelectField",
    "FileUploadField",
    "SubmitButton",
]
