# fmt: off
from __future__ import annotations

import datetime
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from random import Random
from typing import NamedTuple, Optional

from PIL import Image, ImageDraw

from bean_counter import (
    NO_BEAN_IN_YPOS,
    BeanCounterLogic,
    BeanMode,
    BoardConfig,
    Frequency,
    make_beans,
    run_to_completion,
)
# fmt: on

USAGE: str = (
    "Usage: python bean_machine.py <number of beans> <luck | skill> "
    "[--image [path]]\n"
    "       python bean_machine.py test\n"
    "Example: python bean_machine.py 400 luck"
)


class InvariantViolation(AssertionError):
    pass


def check_invariants(logic: BeanCounterLogic, bean_count: int) -> None:
    for y_pos in range(logic.slot_count):
        x_pos = logic.in_flight_bean_x_pos(y_pos)
        if x_pos != NO_BEAN_IN_YPOS and not 0 <= x_pos <= y_pos:
            raise InvariantViolation(
                f"Bean at depth {y_pos} has illegal x-coordinate {x_pos}."
            )

    slot_counts = logic.slot_counts
    if any(count < 0 for count in slot_counts):
        raise InvariantViolation(f"Negative slot count in {slot_counts}.")
    in_slots = sum(slot_counts)
    if in_slots != logic.settled_bean_count():
        raise InvariantViolation(
            f"Slots hold {in_slots} beans but {logic.settled_bean_count()} settled."
        )

    accounted = (
        logic.remaining_bean_count() + logic.in_flight_bean_count() + in_slots
    )
    if accounted != bean_count:
        raise InvariantViolation(
            f"{accounted} beans accounted for, expected {bean_count}."
        )


def check_finished(logic: BeanCounterLogic, bean_count: int) -> None:
    if logic.remaining_bean_count():
        raise InvariantViolation(
            f"{logic.remaining_bean_count()} beans never inserted."
        )
    if logic.in_flight_bean_count():
        raise InvariantViolation(
            f"{logic.in_flight_bean_count()} beans still in flight."
        )
    if sum(logic.slot_counts) != bean_count:
        raise InvariantViolation(
            f"{sum(logic.slot_counts)} beans in slots, expected {bean_count}."
        )


def run_checked_experiment(
    bean_count: int,
    slot_count: int,
    mode: BeanMode = BeanMode.LUCK,
    rng: Optional[Random] = None,
) -> BeanCounterLogic:
    logic = BeanCounterLogic(slot_count)
    logic.reset(make_beans(bean_count, mode, rng))
    check_invariants(logic, bean_count)

    # A bean needs at most slot_count steps to land once inserted.
    step_limit = (bean_count + 1) * (slot_count + 1)
    steps = 0
    while logic.advance_step():
        steps += 1
        if steps > step_limit:
            raise InvariantViolation(
                f"No termination after {steps} steps "
                f"({bean_count} beans, {slot_count} slots)."
            )
        check_invariants(logic, bean_count)

    check_finished(logic, bean_count)
    return logic


def run_invariant_sweep(
    max_beans: int = BoardConfig.SWEEP_MAX_BEANS,
    max_slots: int = BoardConfig.SWEEP_MAX_SLOTS,
    seed: Optional[int] = None,
) -> int:
    """Run every combination of bean and slot count in both modes.

    Returns the number of experiments checked. Raises
    :class:`InvariantViolation` on the first broken invariant.
    """
    rng = Random(seed)
    runs = 0
    for bean_count in range(max_beans + 1):
        for slot_count in range(1, max_slots + 1):
            for mode in BeanMode:
                run_checked_experiment(bean_count, slot_count, mode, rng)
                runs += 1
    logging.info(
        f"Invariants held for {runs} experiments "
        f"(beans 0-{max_beans}, slots 1-{max_slots})."
    )
    return runs


@dataclass
class SlotHistogram:
    slot_counts: Sequence[Frequency]
    board_width: int = field(default=BoardConfig.BOARD_WIDTH)
    board_height: int = field(default=BoardConfig.BOARD_HEIGHT)
    image: Optional[Image.Image] = field(init=False, default=None)
    draw: Optional[ImageDraw.ImageDraw] = field(init=False, default=None)

    def __post_init__(self) -> None:
        if self.board_width <= 0 or self.board_height <= 0:
            raise ValueError("Image dimensions must be positive.")
        self.slot_counts = list(self.slot_counts)

    def _prepare_drawing_surface(self) -> None:
        if self.image is None or self.draw is None:
            self.image = Image.new(
                "RGB",
                (self.board_width, self.board_height),
                BoardConfig.BACKGROUND_COLOR,
            )
            self.draw = ImageDraw.Draw(self.image)
        else:
            self.draw.rectangle(
                (0, 0, self.board_width, self.board_height),
                fill=BoardConfig.BACKGROUND_COLOR,
            )

    def generate_image(self) -> Image.Image:
        self._prepare_drawing_surface()
        assert self.image is not None, "Image should be initialized"

        max_frequency = max(self.slot_counts, default=0)
        if max_frequency <= 0:
            logging.info("No beans in slots; returning blank image.")
            return self.image

        bar_width = max(
            BoardConfig.HISTOGRAM_BAR_MIN_WIDTH,
            self.board_width // len(self.slot_counts),
        )
        self._draw_all_bars(max_frequency, bar_width)
        return self.image

    def _draw_all_bars(self, max_frequency: int, bar_width: int) -> None:
        assert self.draw is not None, "Draw context must exist"

        half_slots = len(self.slot_counts) / 2.0
        board_h = self.board_height

        for idx, frequency in enumerate(self.slot_counts):
            if frequency <= 0:
                continue

            x_start = idx * bar_width
            if x_start >= self.board_width:
                continue
            x_end = min(x_start + bar_width, self.board_width) - 1

            bar_height = max(1, int(frequency / max_frequency * board_h))
            color = (
                BoardConfig.LEFT_COLOR if idx < half_slots else BoardConfig.RIGHT_COLOR
            )
            self.draw.rectangle(
                (x_start, board_h - bar_height, x_end, board_h - 1), fill=color
            )

    def save_image(self, filename: Optional[str | Path] = None) -> Path:
        current_image = self.generate_image()

        if filename:
            output_path = Path(filename).resolve()
        else:
            output_path = generate_unique_filename(
                base_name=BoardConfig.DEFAULT_IMAGE_BASENAME, suffix=".png"
            )

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            current_image.save(output_path)
        except (OSError, ValueError) as exc:
            logging.error(f"Failed to save image to {output_path}: {exc}")
            raise
        logging.info(f"Image successfully saved: {output_path}")
        return output_path


def generate_unique_filename(base_name: str, suffix: str) -> Path:
    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime(
        "%Y%m%d_%H%M%S_%f"
    )
    return Path(f"{base_name}_{timestamp}{suffix}").resolve()


class RunOptions(NamedTuple):
    bean_count: int
    mode: BeanMode
    save_image: bool = False
    image_path: Optional[str] = None


def parse_args(args: Sequence[str]) -> Optional[RunOptions]:
    if len(args) not in (2, 3, 4):
        return None

    try:
        bean_count = int(args[0])
    except ValueError:
        return None
    if bean_count < 0:
        return None

    try:
        mode = BeanMode(args[1])
    except ValueError:
        return None

    extra = list(args[2:])
    if not extra:
        return RunOptions(bean_count, mode)
    if extra[0] != "--image":
        return None
    return RunOptions(bean_count, mode, True, extra[1] if len(extra) > 1 else None)


def run_experiment(
    options: RunOptions,
    slot_count: int = BoardConfig.SLOT_COUNT,
    rng: Optional[Random] = None,
) -> BeanCounterLogic:
    logic = BeanCounterLogic(slot_count)
    logic.reset(make_beans(options.bean_count, options.mode, rng))
    steps = run_to_completion(logic)
    logging.info(
        f"Dropped {options.bean_count} {options.mode.value} beans "
        f"in {steps} steps."
    )
    return logic


def format_slot_counts(logic: BeanCounterLogic) -> str:
    counts = " ".join(str(count) for count in logic.slot_counts)
    return (
        f"Slot bean counts:\n{counts}\n"
        f"Average slot: {logic.average_slot_bean_count():.2f}"
    )


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO, format=BoardConfig.LOG_FORMAT, force=True
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    args = list(sys.argv[1:] if argv is None else argv)

    if args == ["test"]:
        try:
            run_invariant_sweep()
        except InvariantViolation as exc:
            logging.error(f"Invariant check failed: {exc}")
            return 1
        return 0

    options = parse_args(args)
    if options is None:
        print(USAGE)
        return 1

    logic = run_experiment(options)
    print(format_slot_counts(logic))

    if options.save_image:
        try:
            SlotHistogram(logic.slot_counts).save_image(options.image_path)
        except (OSError, ValueError) as exc:
            logging.error(f"Execution failed while saving histogram: {exc}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
