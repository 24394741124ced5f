"""Frontend package: markup and expression parsing."""

from .expression import parse_expression, parse_handler, parse_value
from .parse import parse
