from dataclasses import dataclass
from enum import Enum, IntEnum


class DistributionType(Enum):
    """Distribution of the forward rates on the lattice."""

    LOG_NORMAL = "lognormal"
    NORMAL = "normal"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "").replace("_", "")
            for member in cls:
                if member.value == key:
                    return member
        return None


class OptionType(IntEnum):
    """Swaption side; the integer value is the payoff sign."""

    RECEIVER = -1
    NONE = 0
    PAYER = 1

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().upper()
            aliases = {"CALL": cls.PAYER, "PUT": cls.RECEIVER}
            if key in aliases:
                return aliases[key]
            if key in cls.__members__:
                return cls.__members__[key]
        return None


@dataclass
class SwaptionInfo:
    """Market record of one co-terminal European swaption.

    All amounts are per unit notional and in present value terms as of the
    pricing date:

        value_of_floating_leg = level * rate

    Notes
    -----
    - ``date`` is the expiry; the underlying swap runs from there to the
      common maturity of the term structure.
    - ``coupon`` is the strike (fixed rate) of the swaption.
    - ``steps`` is the desired number of lattice steps from the previous
      expiry (or the pricing date) to this one; ``0`` lets the calibrator
      choose.
    - ``accuracy`` overrides the calibrator's tolerance on the value when
      positive.
    """

    date: object  # QuantLib Date, datetime.date or ISO string
    level: float
    rate: float
    coupon: float
    value: float
    option_type: OptionType = OptionType.PAYER
    steps: int = 0
    volatility: float = None
    accuracy: float = 0.0

    def __post_init__(self):
        self.level = float(self.level)
        self.rate = float(self.rate)
        self.coupon = float(self.coupon)
        self.value = float(self.value)
        self.option_type = OptionType(self.option_type)
        self.steps = int(self.steps)
        self.accuracy = float(self.accuracy)

    @property
    def sign(self):
        return int(self.option_type)

    @property
    def floating_value(self):
        """Present value of the floating leg, ``level * rate``."""
        return self.level * self.rate

    def to_dict(self):
        return {
            "date": str(self.date),
            "level": self.level,
            "rate": self.rate,
            "coupon": self.coupon,
            "value": self.value,
            "option_type": self.option_type.name,
            "steps": self.steps,
            "volatility": self.volatility,
        }
