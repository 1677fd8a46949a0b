"""
Form field components.

These small components keep markup consistent across the sign-in and
registration forms: label, control, help text and the per-field error.
"""

from typing import Iterable, Optional, Tuple, Union

from ..base import Component

Option = Union[str, Tuple[str, str]]


class FormField(Component):
    """Wrapper that renders label, input slot, help, and error text."""

    def __init__(
        self,
        field_id: str,
        label: str,
        *,
        required: bool = False,
        help_text: Optional[str] = None,
        error_text: Optional[str] = None,
    ) -> None:
        self.field_id = field_id
        self.label = label
        self.required = required
        self.help_text = help_text
        self.error_text = error_text

    def _describedby(self) -> Optional[str]:
        ids = []
        if self.help_text:
            ids.append(f"{self.field_id}-help")
        if self.error_text:
            ids.append(f"{self.field_id}-error")
        return " ".join(ids) or None

    def render(self, input_html: str) -> str:
        state_class = " form-field--error" if self.error_text else ""
        required_marker = (
            '<span class="form-required" aria-hidden="true">*</span>'
            if self.required
            else ""
        )
        help_html = (
            f'<p class="form-help" id="{self.field_id}-help">{self.escape(self.help_text)}</p>'
            if self.help_text
            else ""
        )
        error_html = (
            f'<p class="form-error" role="alert" id="{self.field_id}-error">{self.escape(self.error_text)}</p>'
            if self.error_text
            else ""
        )
        label_attrs = self.attributes(for_=self.field_id, class_="form-label")
        return (
            f'<div class="form-field{state_class}">'
            f"<label {label_attrs}>"
            f"{self.escape(self.label)}{required_marker}"
            "</label>"
            f"{input_html}"
            f"{help_html}"
            f"{error_html}"
            "</div>"
        )


class TextInputField(FormField):
    """Single-line text input field (text, email, password, tel)."""

    def render(
        self,
        *,
        value: str = "",
        input_type: str = "text",
        autocomplete: Optional[str] = None,
        placeholder: Optional[str] = None,
        **attrs: str,
    ) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            type=input_type,
            value=value if input_type != "password" else None,
            autocomplete=autocomplete,
            placeholder=placeholder,
            required=self.required,
            aria_describedby=self._describedby(),
            aria_invalid="true" if self.error_text else "false",
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class SelectField(FormField):
    """Drop-down with a leading empty choice; options are values or (value, label)."""

    def render(self, *, options: Iterable[Option], value: str = "", placeholder: str = "Select...") -> str:
        option_html = [f'<option value="">{self.escape(placeholder)}</option>']
        for opt in options:
            opt_value, opt_label = opt if isinstance(opt, tuple) else (opt, opt)
            selected = " selected" if opt_value == value else ""
            option_html.append(
                f'<option value="{self.escape(opt_value)}"{selected}>{self.escape(opt_label)}</option>'
            )
        select_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            required=self.required,
            aria_describedby=self._describedby(),
            aria_invalid="true" if self.error_text else "false",
        )
        return super().render(f"<select {select_attrs}>{''.join(option_html)}</select>")


class FileUploadField(FormField):
    """File upload control with consistent styling."""

    def render(self, accept: Optional[str] = None, **attrs: str) -> str:
        input_attrs = self.attributes(
            id=self.field_id,
            name=self.field_id,
            type="file",
            aria_describedby=self._describedby(),
            aria_invalid="true" if self.error_text else "false",
            accept=accept,
            **attrs,
        )
        return super().render(f"<input {input_attrs}>")


class SubmitButton(Component):
    def __init__(
        self,
        label: str,
        *,
        name: Optional[str] = None,
        value: Optional[str] = None,
        variant: str = "primary",
        formaction: Optional[str] = None,
    ):
        self.label = label
        self.name = name
        self.value = value
        self.variant = variant
        self.formaction = formaction

    def render(self) -> str:
        attrs = self.attributes(
            type="submit",
            class_=self.classes("btn", f"btn-{self.variant}"),
            name=self.name,
            value=self.value,
            formaction=self.formaction,
        )
        return f"<button {attrs}>{self.escape(self.label)}</button>"
