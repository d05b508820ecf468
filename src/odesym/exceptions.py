# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Exception Hierarchy

Errors raised inside the simulation core.

Runtime faults (ParseError, EvaluationFault, LayoutInconsistency) are raised
internally and caught at the evaluation boundary, where they degrade to a
neutral default (constant zero, skipped sample) and are logged. Only
ValidationError reaches the caller, for malformed configuration or model
objects.
"""


class OdeSymError(Exception):
    """Base class for all odesym errors"""

    pass


class ParseError(OdeSymError, ValueError):
    """Raised when a user expression cannot be parsed"""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        super().__init__(f"Cannot parse expression {raw!r}: {reason}")


class EvaluationFault(OdeSymError, ArithmeticError):
    """Raised when a compiled expression fails during evaluation"""

    pass


class LayoutInconsistency(OdeSymError, KeyError):
    """Raised when a name or subsystem id is missing from the current layout"""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable
        return ": ".join(str(arg) for arg in self.args)


class ValidationError(OdeSymError, ValueError):
    """Raised when model or configuration objects are invalid"""

    pass


__all__ = [
    "OdeSymError",
    "ParseError",
    "EvaluationFault",
    "LayoutInconsistency",
    "ValidationError",
]
