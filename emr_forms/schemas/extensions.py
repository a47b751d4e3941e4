"""
Extension URI table for the Questionnaire wire format.

Canonical URIs are ``{base}/{version}/{name}``. Documents written by older
builder versions used unversioned URIs, which are still recognised on read
but never written.
"""

from dataclasses import dataclass, field
from typing import Optional

from emr_forms.config import settings

TRANSLATION_URL = "http://hl7.org/fhir/StructureDefinition/translation"

FIELD_STYLING = "field-styling"
VALIDATION_CONFIG = "validation-config"
PATIENT_BINDING = "patient-binding"
FIELD_ORDER = "field-order"
HAS_TEXT_FIELD = "has-text-field"
FIELD_TYPE = "field-type"
FIELD_ID = "field-id"
FIELD_WIDTH = "field-width"
CONDITIONAL_LOGIC = "conditional-logic"
FORM_STYLING = "form-styling"
CREATED_BY = "created-by"
# Read-only: older documents stored the binding path separately.
FHIR_PATH = "fhir-path"

FIELD_EXTENSIONS = (
    FIELD_STYLING,
    VALIDATION_CONFIG,
    PATIENT_BINDING,
    FIELD_ORDER,
    HAS_TEXT_FIELD,
    FIELD_TYPE,
    FIELD_ID,
    FIELD_WIDTH,
    CONDITIONAL_LOGIC,
)
FORM_EXTENSIONS = (FORM_STYLING, CREATED_BY)
KNOWN_NAMES = FIELD_EXTENSIONS + FORM_EXTENSIONS + (FHIR_PATH,)

LEGACY_BASES = ("http://medimind.ge/fhir/extensions", "http://medimind.ge")


@dataclass(frozen=True)
class ExtensionRegistry:
    base_url: str
    version: str
    legacy_bases: tuple[str, ...] = LEGACY_BASES
    option_system: str = "http://medimind.ge/dropdown-values"
    category_system: str = "http://medimind.ge/form-category"
    secondary_language: str = "en"
    _lookup: dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        lookup: dict[str, str] = {}
        for name in KNOWN_NAMES:
            for legacy in self.legacy_bases:
                lookup[f"{legacy.rstrip('/')}/{name}"] = name
            lookup[self.url(name)] = name
        object.__setattr__(self, "_lookup", lookup)

    def url(self, name: str) -> str:
        if name not in KNOWN_NAMES:
            raise KeyError(f"Unknown extension '{name}'")
        return f"{self.base_url.rstrip('/')}/{self.version}/{name}"

    def name_for(self, url: Optional[str]) -> Optional[str]:
        """Extension name for a canonical or legacy URI; None when unrecognised."""
        if not url:
            return None
        return self._lookup.get(url)


def default_registry() -> ExtensionRegistry:
    return ExtensionRegistry(
        base_url=settings.EXTENSION_BASE_URL,
        version=settings.EXTENSION_VERSION,
        option_system=settings.OPTION_CODING_SYSTEM,
        category_system=settings.FORM_CATEGORY_SYSTEM,
        secondary_language=settings.SECONDARY_LANGUAGE,
    )
