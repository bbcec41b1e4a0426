"""Pydantic request and response models for the AI Radiologist API layer.

Wire format is camelCase; models accept both the alias and the field name.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TEMPLATE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-_]+$")
THEMES = ("light", "dark", "system")


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(message)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------------------------------------------------------------------------- #
# Request models
# --------------------------------------------------------------------------- #


class PreferencesUpdate(CamelModel):
    """Partial preference update; only fields present in the body are written."""

    theme: Optional[str] = None
    default_template: Optional[str] = None
    auto_save: Optional[bool] = None
    yolo_mode: Optional[bool] = None
    onboarding_completed: Optional[bool] = None

    @field_validator("theme")
    @classmethod
    def _validate_theme(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in THEMES:
            raise ValueError("Invalid theme value. Must be light, dark, or system.")
        return value


class MacroCreate(CamelModel):
    name: str = Field(default=None, validate_default=True)
    replacement_text: str = Field(default=None, validate_default=True)
    is_active: bool = True
    is_smart_macro: bool = False
    context_expansions: Optional[Dict[str, Any]] = None
    category_id: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _require_text(value, "Name is required")

    @field_validator("replacement_text", mode="before")
    @classmethod
    def _validate_replacement(cls, value: Any) -> str:
        return _require_text(value, "Replacement text is required")


class MacroUpdate(CamelModel):
    name: Optional[str] = None
    replacement_text: Optional[str] = None
    is_active: Optional[bool] = None
    is_smart_macro: Optional[bool] = None
    context_expansions: Optional[Dict[str, Any]] = None
    category_id: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _require_text(value, "Name must be a non-empty string")

    @field_validator("replacement_text", mode="before")
    @classmethod
    def _validate_replacement(cls, value: Any) -> str:
        return _require_text(value, "Replacement text must be a non-empty string")


class CategoryCreate(CamelModel):
    name: str = Field(default=None, validate_default=True)
    parent_id: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: Any) -> str:
        return _require_text(value, "Name is required")


class TemplateSection(CamelModel):
    id: str
    name: str
    content: str

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Section name is required")
        return value


class TemplateForm(CamelModel):
    """Template form data; rules are checked in order and the first failure is reported."""

    name: str
    modality: str
    body_part: str
    description: str
    content: Optional[str] = None
    sections: Optional[List[TemplateSection]] = None

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Template name is required")
        if len(value) < 3:
            raise ValueError("Template name must be at least 3 characters")
        if len(value) > 100:
            raise ValueError("Template name must be less than 100 characters")
        if not TEMPLATE_NAME_PATTERN.match(value):
            raise ValueError(
                "Template name can only contain letters, numbers, spaces, hyphens, and underscores"
            )
        return value

    @field_validator("modality")
    @classmethod
    def _validate_modality(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Please select a modality")
        return value

    @field_validator("body_part")
    @classmethod
    def _validate_body_part(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Please select a body part")
        return value

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: str) -> str:
        if len(value) < 1:
            raise ValueError("Description is required")
        if len(value) < 10:
            raise ValueError("Description must be at least 10 characters")
        if len(value) > 500:
            raise ValueError("Description must be less than 500 characters")
        return value

    @field_validator("content")
    @classmethod
    def _validate_content(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > 10000:
            raise ValueError("Template content must be less than 10,000 characters")
        return value

    def to_content(self) -> Dict[str, Any]:
        return {
            "sections": [section.model_dump() for section in self.sections or []],
            "rawContent": self.content or "",
        }


class CloneRequest(CamelModel):
    global_template_id: str
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)

    @field_validator("global_template_id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        try:
            uuid.UUID(value)
        except ValueError as exc:
            raise ValueError("Invalid template ID") from exc
        return value


class TemplateGenerateRequest(CamelModel):
    description: str = Field(default=None, validate_default=True)
    modality: Optional[str] = None
    body_part: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _validate_description(cls, value: Any) -> str:
        return _require_text(value, "Description is required")


class SectionText(CamelModel):
    name: str
    content: str


class SuggestRequest(CamelModel):
    modality: str = Field(default=None, validate_default=True)
    body_part: str = Field(default=None, validate_default=True)
    description: Optional[str] = None
    existing_sections: Optional[List[SectionText]] = None
    request_type: Literal["sections", "improvements", "normalFindings"]

    @field_validator("modality", mode="before")
    @classmethod
    def _validate_modality(cls, value: Any) -> str:
        return _require_text(value, "Modality is required")

    @field_validator("body_part", mode="before")
    @classmethod
    def _validate_body_part(cls, value: Any) -> str:
        return _require_text(value, "Body part is required")


class GenerateRequest(CamelModel):
    template_id: str = Field(default=None, validate_default=True)
    findings: str = Field(default=None, validate_default=True)
    template_name: str = Field(default=None, validate_default=True)
    modality: str = Field(default=None, validate_default=True)
    body_part: str = Field(default=None, validate_default=True)
    template_content: Optional[str] = None

    @field_validator("template_id", mode="before")
    @classmethod
    def _validate_template_id(cls, value: Any) -> str:
        return _require_text(value, "Template ID is required")

    @field_validator("findings", mode="before")
    @classmethod
    def _validate_findings(cls, value: Any) -> str:
        return _require_text(value, "Clinical findings are required")

    @field_validator("template_name", mode="before")
    @classmethod
    def _validate_template_name(cls, value: Any) -> str:
        return _require_text(value, "Template name is required")

    @field_validator("modality", mode="before")
    @classmethod
    def _validate_modality(cls, value: Any) -> str:
        return _require_text(value, "Modality is required")

    @field_validator("body_part", mode="before")
    @classmethod
    def _validate_body_part(cls, value: Any) -> str:
        return _require_text(value, "Body part is required")


class CheckoutRequest(CamelModel):
    price_id: Optional[str] = None


# --------------------------------------------------------------------------- #
# Response models
# --------------------------------------------------------------------------- #


class Preferences(CamelModel):
    theme: Literal["light", "dark", "system"] = "system"
    default_template: Optional[str] = None
    auto_save: bool = True
    yolo_mode: bool = False
    onboarding_completed: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Preferences":
        """Build from a stored row; NULL columns read as the defaults."""

        def flag(column: str, default: bool) -> bool:
            value = row.get(column)
            return default if value is None else value

        return cls(
            theme=row.get("theme") or "system",
            default_template=row.get("default_template_id"),
            auto_save=flag("keyboard_shortcuts_enabled", True),
            yolo_mode=flag("yolo_mode_enabled", False),
            onboarding_completed=flag("onboarding_completed", False),
        )


class Macro(CamelModel):
    id: str
    name: str
    replacement_text: str
    is_active: bool
    is_global: bool = False
    is_smart_macro: bool = False
    context_expansions: Optional[Dict[str, Any]] = None
    category_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Macro":
        return cls(
            id=row["id"],
            name=row["name"],
            replacement_text=row["replacement_text"],
            is_active=row.get("is_active", True),
            is_global=row.get("is_global", False),
            is_smart_macro=row.get("is_smart", False),
            context_expansions=row.get("smart_context"),
            category_id=row.get("category_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class MacroCategory(CamelModel):
    id: str
    name: str
    parent_id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MacroCategory":
        return cls(
            id=row["id"],
            name=row["name"],
            parent_id=row.get("parent_id"),
            created_at=row.get("created_at"),
        )


class Template(CamelModel):
    id: str
    name: str
    modality: str
    body_part: str
    description: Optional[str] = None
    content: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    is_global: bool = False
    origin_global_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], *, is_global: bool) -> "Template":
        return cls(
            id=row["id"],
            name=row["name"],
            modality=row["modality"],
            body_part=row["body_part"],
            description=row.get("description"),
            content=row.get("content") or {},
            tags=row.get("tags") or [],
            is_global=is_global,
            origin_global_id=None if is_global else row.get("origin_global_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True)
