"""
Number Generation Service

Generates document numbers for invoices and driver settlements from a
format template and a sequence value. Supports tokens like {YEAR},
{MONTH}, {DAY} and {NUMBER:04}.
"""

import re
from datetime import datetime
from typing import Optional


class NumberGenerator:
    """Service for generating formatted sequential numbers."""

    @staticmethod
    def generate(
        format_template: str,
        sequence_number: int,
        date: Optional[datetime] = None,
    ) -> str:
        """
        Generate a formatted number based on template and sequence.

        Args:
            format_template: Template string with tokens (e.g., "INV-{YEAR}{MONTH}{DAY}-{NUMBER:04}")
            sequence_number: The sequential number to use
            date: Optional date to use (defaults to current date)

        Returns:
            Formatted number string (e.g., "INV-20250106-0001")

        Supported tokens:
            {YEAR}            - Current year (e.g., 2025)
            {YEAR:2}          - Last 2 digits of year (e.g., 25)
            {MONTH}           - Current month zero-padded (e.g., 01-12)
            {DAY}             - Current day zero-padded (e.g., 01-31)
            {NUMBER}          - Sequential number
            {NUMBER:04}       - Sequential number zero-padded to 4 digits
        """
        if not date:
            date = datetime.utcnow()

        result = format_template

        result = result.replace("{YEAR}", str(date.year))
        result = re.sub(r'\{YEAR:(\d+)\}', lambda m: str(date.year)[-int(m.group(1)):], result)
        result = result.replace("{MONTH}", f"{date.month:02d}")
        result = result.replace("{DAY}", f"{date.day:02d}")

        number_pattern = r'\{NUMBER(?::(\d+))?\}'

        def replace_number(match):
            padding = int(match.group(1)) if match.group(1) else 0
            if padding > 0:
                return f"{sequence_number:0{padding}d}"
            return str(sequence_number)

        return re.sub(number_pattern, replace_number, result)

    @staticmethod
    def sequence_scope(format_template: str, date: datetime) -> str:
        """
        Portion of the rendered number that identifies its counter.

        "INV-{YEAR}{MONTH}{DAY}-{NUMBER:04}" restarts numbering every day,
        so its scope is "INV-20250106-".
        """
        prefix = re.split(r'\{NUMBER(?::\d+)?\}', format_template, maxsplit=1)[0]
        return NumberGenerator.generate(prefix, 0, date=date)

    @staticmethod
    def validate_format(format_template: str) -> tuple[bool, Optional[str]]:
        """
        Validate a format template.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not format_template or not isinstance(format_template, str):
            return False, "Format template cannot be empty"

        if len(format_template) > 50:
            return False, "Format template is too long (max 50 characters)"

        if "{NUMBER" not in format_template:
            return False, "Format must contain {NUMBER} token"

        if format_template.count("{") != format_template.count("}"):
            return False, "Unbalanced braces in format template"

        valid_tokens = [
            r'\{YEAR(?::\d+)?\}',
            r'\{MONTH\}',
            r'\{DAY\}',
            r'\{NUMBER(?::\d+)?\}',
        ]

        tokens = re.findall(r'\{[^}]+\}', format_template)

        for token in tokens:
            if not any(re.fullmatch(pattern, token) for pattern in valid_tokens):
                return False, f"Invalid token: {token}"

        return True, None
