"""
Bizflow Workflow Templates

Pre-built workflows for common patterns:
- Appointment reminders and follow-ups
- Birthday greetings
- New client welcome
- Low stock alerts
"""

from bizflow.automation.templates.builtin import (
    TemplateCategory,
    TemplateDefinition,
    WorkflowTemplate,
    get_builtin_templates,
    get_template,
)

__all__ = [
    "TemplateCategory",
    "TemplateDefinition",
    "WorkflowTemplate",
    "get_builtin_templates",
    "get_template",
]
