"""
Keyboard Expression Accumulator

Turns the amount keypad's key presses into a signed decimal expression
such as "12.5+3-0.75" and totals it on "ok".

States:
- EMPTY: nothing typed yet
- ACCUMULATING: the last term holds at least one character
- AWAITING_OPERAND: the last term is only an operator

Input rules:
- a term that is a lone "0" only accepts "." next (no "00", no "05")
- one "." per term, at most two digits after it
- an operator right after another operator replaces it
- "del" removes one character; on an operator-only term it removes the term

The total is computed with billbook.money, so "0.1+0.2" is exactly 0.30.
"""

from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Union

from billbook.money import ZERO, add, negate

KeyCode = Union[int, str]

DELETE = "del"
ENTER = "ok"
DECIMAL_POINT = "."
OPERATORS = ("+", "-")
MAX_FRACTION_DIGITS = 2


class KeyboardState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    AWAITING_OPERAND = "awaiting_operand"


class Term:
    """One signed operand of the expression."""

    def __init__(self, sign: Optional[str] = None):
        self.sign = sign
        self.chars: list[str] = []

    @property
    def has_point(self) -> bool:
        return DECIMAL_POINT in self.chars

    @property
    def fraction_digits(self) -> int:
        if not self.has_point:
            return 0
        return len(self.chars) - self.chars.index(DECIMAL_POINT) - 1

    def value(self) -> Decimal:
        if not self.chars or self.chars == [DECIMAL_POINT]:
            return ZERO
        amount = Decimal("".join(self.chars))
        return negate(amount) if self.sign == "-" else amount

    def __str__(self) -> str:
        return f"{self.sign or ''}{''.join(self.chars)}"


class KeyboardAccumulator:
    """
    State machine behind the amount keypad.

    Usage:
        keyboard = KeyboardAccumulator()
        for key in (1, 2, "+", 3, "ok"):
            keyboard.press(key)
        keyboard.total  # Decimal("15.00")
    """

    def __init__(self, on_enter: Optional[Callable[[Decimal], None]] = None):
        self._terms: list[Term] = []
        self._on_enter = on_enter
        self.total: Optional[Decimal] = None

    @property
    def state(self) -> KeyboardState:
        if not self._terms:
            return KeyboardState.EMPTY
        if not self._terms[-1].chars:
            return KeyboardState.AWAITING_OPERAND
        return KeyboardState.ACCUMULATING

    @property
    def display(self) -> str:
        return "".join(str(term) for term in self._terms)

    def press(self, code: KeyCode) -> bool:
        """
        Feed one key.

        Returns True if the key changed the expression (or produced a total),
        False if it was rejected. Rejected keys leave the state untouched.
        """
        key = str(code)
        if key.isdigit() and len(key) == 1:
            return self._digit(key)
        if key == DECIMAL_POINT:
            return self._point()
        if key in OPERATORS:
            return self._operator(key)
        if key == DELETE:
            return self._delete()
        if key == ENTER:
            self._enter()
            return True
        return False

    def clear(self) -> None:
        self._terms = []
        self.total = None

    def _digit(self, digit: str) -> bool:
        if not self._terms:
            self._terms.append(Term())
        term = self._terms[-1]
        if term.fraction_digits >= MAX_FRACTION_DIGITS:
            return False
        if term.chars == ["0"]:
            return False
        term.chars.append(digit)
        return True

    def _point(self) -> bool:
        if not self._terms:
            self._terms.append(Term())
        term = self._terms[-1]
        if term.has_point:
            return False
        if not term.chars:
            term.chars.append("0")
        term.chars.append(DECIMAL_POINT)
        return True

    def _operator(self, operator: str) -> bool:
        if self._terms and not self._terms[-1].chars:
            self._terms[-1].sign = operator
            return True
        self._terms.append(Term(sign=operator))
        return True

    def _delete(self) -> bool:
        if not self._terms:
            return False
        term = self._terms[-1]
        if term.chars:
            term.chars.pop()
            if not term.chars and term.sign is None:
                self._terms.pop()
            return True
        self._terms.pop()
        return True

    def _enter(self) -> Decimal:
        result = ZERO
        for term in self._terms:
            result = add(result, term.value())
        self.total = result
        if self._on_enter is not None:
            self._on_enter(result)
        return result
