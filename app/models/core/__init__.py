from .mixins import (
    TimestampMixin,
    CreatedAtMixin,
)



__all__ = [
    'TimestampMixin',
    'CreatedAtMixin',
]
