from marshmallow import Schema, fields, validate, validates, ValidationError, EXCLUDE

from records.editor import parse_path
from records.errors import EditError
from records.paginator import PAGE_SIZES, DEFAULT_PAGE_SIZE
from records.resources import SUPPORTED_TYPES
from records.templates import CLINICAL_STATUSES


class BackendConfigSchema(Schema):
    """Schema for validating FHIR backend configuration data."""

    class Meta:
        # Ignore unknown fields instead of raising errors
        unknown = EXCLUDE

    base_url = fields.URL(required=True, require_tld=False, schemes={'http', 'https'},
                          error_messages={'required': 'Base URL is required'})
    token = fields.String(required=False, allow_none=True)
    name = fields.String(required=False, allow_none=True)
    is_default = fields.Boolean(required=False, load_default=False)


class ListQuerySchema(Schema):
    """Schema for record list query parameters."""

    class Meta:
        unknown = EXCLUDE

    count = fields.Integer(load_default=DEFAULT_PAGE_SIZE, validate=validate.OneOf(PAGE_SIZES))
    # Negative offsets are clamped to zero by the paginator, not rejected
    offset = fields.Integer(load_default=0)
    filter_attribute = fields.String(load_default=None, allow_none=True)
    query = fields.String(load_default='')
    case_sensitive = fields.Boolean(load_default=False)
    sort = fields.String(load_default=None, allow_none=True)


class EditSchema(Schema):
    """A single path/value edit."""

    path = fields.Raw(required=True)
    value = fields.Raw(required=True, allow_none=True)

    @validates('path')
    def validate_path(self, value, **kwargs):
        """Validate that the path parses into edit segments."""
        try:
            parse_path(value)
        except EditError as e:
            raise ValidationError(str(e))


class EditRequestSchema(Schema):
    """Schema for PATCH bodies carrying a list of edits."""

    edits = fields.List(fields.Nested(EditSchema), required=True,
                        validate=validate.Length(min=1))


class ConditionFormSchema(Schema):
    """Schema for the new-condition form."""

    class Meta:
        unknown = EXCLUDE

    patient_id = fields.String(required=True, validate=validate.Length(min=1))
    code = fields.String(required=True, validate=validate.Length(min=1))
    display = fields.String(required=True)
    clinical_status = fields.String(required=True, validate=validate.OneOf(CLINICAL_STATUSES))
    recorded_date = fields.String(required=True)
    note = fields.String(load_default='')
    note_author = fields.String(load_default=None, allow_none=True)
    recorder_reference = fields.String(load_default=None, allow_none=True)
    recorder_type = fields.String(load_default=None, allow_none=True)


def validate_resource_type(resource_type):
    """Raise ValidationError unless the resource type is supported."""
    if resource_type not in SUPPORTED_TYPES:
        raise ValidationError(
            f"Unsupported resource type: {resource_type}. "
            f"Expected one of {', '.join(SUPPORTED_TYPES)}"
        )
