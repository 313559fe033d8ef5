"""studio_engine: declarative resource fields, conditional visibility and CRUD over SQLite."""

__version__ = "0.1.0"

from .exceptions import (
    StudioError, CircularDependencyError, ValidationError,
    NotFoundError, ResourceNotRegisteredError, ActionNotFoundError,
)
from .fields import (
    Field, ID, Text, Textarea, Number, Boolean, Date, Email, Password,
    Json, TagInput, MultiSelectServer, IconPicker, Image,
    Select, BelongsTo, BelongsToMany, HasMany, Media,
)
from .containers import Group, Section
from .filters import SelectFilter, BooleanFilter, DateRangeFilter, BelongsToManyFilter
from .actions import Action, BulkDeleteAction, BulkUpdateAction, ExportAction
from .store import (
    Model, Record, Query,
    BelongsToRelation, BelongsToManyRelation, HasManyRelation, MediaRelation,
)
from .resource import Resource, ResourceRegistry, registry
from .service import ResourceService
