# ============================================================
# Biometric Template Adapter - Core Template Module
# ============================================================

from core.template.codec import (
    MAX_TEMPLATE_SIZE,
    flatten_template,
    max_template_size,
    unflatten_template,
)
from core.template.template import Template, augment

__all__ = [
    "MAX_TEMPLATE_SIZE",
    "Template",
    "augment",
    "flatten_template",
    "max_template_size",
    "unflatten_template",
]
