# fmt: off
from __future__ import annotations

import logging
import math
from collections import deque
from collections.abc import Iterable, MutableSequence
from dataclasses import dataclass, field
from enum import Enum
from random import Random
from typing import Deque, Final, List, Optional, Tuple, TypeAlias

XPos: TypeAlias = int
Depth: TypeAlias = int
Frequency: TypeAlias = int
Color: TypeAlias = Tuple[int, int, int]
# fmt: on


@dataclass(frozen=True)
class BoardConfig:
    SLOT_COUNT: Final[int] = 10
    NO_BEAN_IN_YPOS: Final[int] = -1
    OFF_BOARD_XPOS: Final[int] = -1

    SKILL_AVERAGE: Final[float] = 4.5
    SKILL_STDEV: Final[float] = 1.5
    LUCK_RIGHT_PROBABILITY: Final[float] = 0.5

    SWEEP_MAX_BEANS: Final[int] = 3
    SWEEP_MAX_SLOTS: Final[int] = 5

    BOARD_WIDTH: Final[int] = 700
    BOARD_HEIGHT: Final[int] = 500
    BACKGROUND_COLOR: Final[Color] = (102, 51, 153)
    LEFT_COLOR: Final[Color] = (122, 122, 244)
    RIGHT_COLOR: Final[Color] = (122, 244, 122)
    HISTOGRAM_BAR_MIN_WIDTH: Final[int] = 1

    DEFAULT_IMAGE_BASENAME: Final[str] = "bean_counter"
    LOG_FORMAT: Final[str] = "%(levelname)s: %(message)s"


NO_BEAN_IN_YPOS: Final[int] = BoardConfig.NO_BEAN_IN_YPOS


class BeanMode(Enum):
    LUCK = "luck"
    SKILL = "skill"


def sample_skill_level(rng: Random) -> int:
    draw = rng.gauss(BoardConfig.SKILL_AVERAGE, BoardConfig.SKILL_STDEV)
    # Halves round up, not to even.
    return int(math.floor(draw + 0.5))


@dataclass(eq=False)
class Bean:
    """A single falling bean.

    In luck mode every peg is a fair coin flip drawn from ``rng``. In skill
    mode the bean goes right until it has used up ``skill_level`` right
    branches and goes left from then on, so a bean of skill ``k`` always
    lands in slot ``k`` of a board deep enough to reach it.
    """

    mode: BeanMode
    rng: Random = field(repr=False)
    skill_level: Optional[int] = None
    branches_taken_right: int = field(init=False, default=0)
    x_pos: XPos = field(init=False, default=BoardConfig.OFF_BOARD_XPOS)

    def __post_init__(self) -> None:
        if self.mode is BeanMode.SKILL and self.skill_level is None:
            self.skill_level = sample_skill_level(self.rng)

    @property
    def is_luck(self) -> bool:
        return self.mode is BeanMode.LUCK

    @property
    def on_board(self) -> bool:
        return self.x_pos != BoardConfig.OFF_BOARD_XPOS

    def move(self) -> None:
        if self.is_luck:
            if self.rng.random() < BoardConfig.LUCK_RIGHT_PROBABILITY:
                self.x_pos += 1
        elif self.branches_taken_right < self.skill_level:
            self.branches_taken_right += 1
            self.x_pos += 1

    def reset_for_new_run(self) -> None:
        self.branches_taken_right = 0

    def place(self) -> None:
        self.x_pos = 0

    def lift(self) -> None:
        self.x_pos = BoardConfig.OFF_BOARD_XPOS


def by_x_pos(bean: Bean) -> XPos:
    """Sort key ordering beans left to right; use with a stable sort."""
    return bean.x_pos


def make_beans(
    count: int, mode: BeanMode, rng: Optional[Random] = None
) -> List[Bean]:
    if count < 0:
        raise ValueError("Bean count cannot be negative.")
    rng = rng if rng is not None else Random()
    return [Bean(mode, rng) for _ in range(count)]


class BeanCounterLogic:
    """Core state machine of the bean counter.

    In-flight beans are stored by depth in a row of ``slot_count`` cells. The
    bean at depth ``d`` has x-coordinate in ``[0, d]``; for a 4-slot machine::

                         (0,0)
                    (0,1)     (1,1)
               (0,2)     (1,2)     (2,2)
          (0,3)     (1,3)     (2,3)     (3,3)
         [Slot0]   [Slot1]   [Slot2]   [Slot3]

    A bean in the deepest cell drops into the slot matching its x-coordinate
    on the next step.
    """

    def __init__(self, slot_count: int) -> None:
        if slot_count < 1:
            raise ValueError("Slot count must be positive.")
        self.slot_count = slot_count
        self._row: List[Optional[Bean]] = [None] * slot_count
        self._slot_bean_counts: MutableSequence[Frequency] = [0] * slot_count
        self._pending: Deque[Bean] = deque()
        self._settled: List[Bean] = []

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(slot_count={self.slot_count}, "
            f"remaining={self.remaining_bean_count()}, "
            f"in_flight={self.in_flight_bean_count()}, "
            f"settled={self.settled_bean_count()})"
        )

    def remaining_bean_count(self) -> int:
        return len(self._pending)

    def in_flight_bean_count(self) -> int:
        return sum(1 for bean in self._row if bean is not None)

    def settled_bean_count(self) -> int:
        return len(self._settled)

    def total_bean_count(self) -> int:
        return (
            self.remaining_bean_count()
            + self.in_flight_bean_count()
            + self.settled_bean_count()
        )

    def in_flight_bean_x_pos(self, y_pos: Depth) -> XPos:
        if not 0 <= y_pos < self.slot_count:
            raise IndexError(
                f"Depth {y_pos} out of range for {self.slot_count} slots."
            )
        bean = self._row[y_pos]
        return NO_BEAN_IN_YPOS if bean is None else bean.x_pos

    def slot_bean_count(self, i: int) -> Frequency:
        if not 0 <= i < self.slot_count:
            raise IndexError(f"Slot {i} out of range for {self.slot_count} slots.")
        return self._slot_bean_counts[i]

    @property
    def settled_beans(self) -> Tuple[Bean, ...]:
        return tuple(self._settled)

    @property
    def slot_counts(self) -> Tuple[Frequency, ...]:
        return tuple(self._slot_bean_counts)

    def average_slot_bean_count(self) -> float:
        bean_count = sum(self._slot_bean_counts)
        if bean_count == 0:
            return 0.0
        total = sum(i * count for i, count in enumerate(self._slot_bean_counts))
        return total / bean_count

    def upper_half(self) -> None:
        """Keep the upper half of the beans in slots.

        The median bean of an odd count and the lower of the two middle beans
        of an even count are removed along with the lower half, so
        ``n // 2 + 1`` beans go.
        """
        ordered = self._sorted_settled()
        count = min(len(ordered) // 2 + 1, len(ordered))
        for bean in ordered[:count]:
            self._slot_bean_counts[bean.x_pos] -= 1
        self._settled = ordered[count:]
        logging.debug(f"Upper half kept {len(self._settled)} beans.")

    def lower_half(self) -> None:
        """Keep the lower half of the beans in slots, removing ``n // 2``."""
        ordered = self._sorted_settled()
        keep = len(ordered) - len(ordered) // 2
        for bean in ordered[keep:]:
            self._slot_bean_counts[bean.x_pos] -= 1
        self._settled = ordered[:keep]
        logging.debug(f"Lower half kept {len(self._settled)} beans.")

    def _sorted_settled(self) -> List[Bean]:
        return sorted(self._settled, key=by_x_pos)

    def reset(self, beans: Iterable[Bean]) -> None:
        """Hard reset: discard all state and load ``beans`` as the pool."""
        pool = list(beans)
        self._clear()
        for bean in pool:
            bean.reset_for_new_run()
            bean.lift()
        self._pending.extend(pool)
        self._insert_next_bean()
        logging.debug(f"Reset with {len(pool)} beans on {self.slot_count} slots.")

    def repeat(self) -> None:
        """Scoop up every bean and start the experiment over.

        Beans in slots come first, then in-flight beans from the top of the
        board down, then any beans still waiting to be inserted.
        """
        pool: List[Bean] = list(self._settled)
        pool.extend(bean for bean in self._row if bean is not None)
        pool.extend(self._pending)
        if not pool:
            logging.warning("Repeat requested with no beans to recycle.")
        self.reset(pool)

    def advance_step(self) -> bool:
        """Advance every bean one row and insert a new bean at the top.

        Returns ``False`` once nothing changed, meaning the machine is done.
        """
        change = False
        bottom = self.slot_count - 1

        landed = self._row[bottom]
        if landed is not None:
            self._slot_bean_counts[landed.x_pos] += 1
            self._settled.append(landed)
            self._row[bottom] = None
            change = True

        for depth in range(bottom - 1, -1, -1):
            bean = self._row[depth]
            if bean is None:
                continue
            self._row[depth + 1] = bean
            self._row[depth] = None
            bean.move()
            change = True

        if self._insert_next_bean():
            change = True

        return change

    def _insert_next_bean(self) -> bool:
        if not self._pending:
            return False
        bean = self._pending.popleft()
        bean.place()
        self._row[0] = bean
        return True

    def _clear(self) -> None:
        self._row = [None] * self.slot_count
        self._slot_bean_counts = [0] * self.slot_count
        self._pending.clear()
        self._settled = []


def run_to_completion(logic: BeanCounterLogic) -> int:
    steps = 0
    while logic.advance_step():
        steps += 1
    return steps
