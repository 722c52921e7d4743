import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from random import Random

from PIL import Image

from bean_counter import BeanCounterLogic, BeanMode, BoardConfig, make_beans
from bean_machine import (
    USAGE,
    InvariantViolation,
    RunOptions,
    SlotHistogram,
    check_finished,
    check_invariants,
    format_slot_counts,
    main,
    parse_args,
    run_checked_experiment,
    run_experiment,
    run_invariant_sweep,
)


class IllegalPositionLogic:
    slot_count = 3
    slot_counts = (0, 0, 0)

    def in_flight_bean_x_pos(self, y_pos):
        return 2 if y_pos == 1 else -1

    def settled_bean_count(self):
        return 0

    def remaining_bean_count(self):
        return 0

    def in_flight_bean_count(self):
        return 1


class TestInvariantHarness(unittest.TestCase):
    def test_sweep_covers_every_small_configuration(self):
        for seed in range(5):
            with self.subTest(seed=seed):
                self.assertEqual(run_invariant_sweep(seed=seed), 4 * 5 * 2)

    def test_checked_experiment_settles_every_bean(self):
        logic = run_checked_experiment(25, 6, BeanMode.SKILL, Random(3))
        self.assertEqual(sum(logic.slot_counts), 25)

    def test_illegal_position_is_reported(self):
        with self.assertRaises(InvariantViolation):
            check_invariants(IllegalPositionLogic(), 1)

    def test_conservation_mismatch_is_reported(self):
        logic = BeanCounterLogic(4)
        logic.reset(make_beans(2, BeanMode.LUCK, Random(0)))
        check_invariants(logic, 2)
        with self.assertRaises(InvariantViolation):
            check_invariants(logic, 3)

    def test_unfinished_run_is_reported(self):
        logic = BeanCounterLogic(4)
        logic.reset(make_beans(2, BeanMode.LUCK, Random(0)))
        with self.assertRaises(InvariantViolation):
            check_finished(logic, 2)

    def test_violation_is_an_assertion_error(self):
        self.assertTrue(issubclass(InvariantViolation, AssertionError))


class TestSlotHistogram(unittest.TestCase):
    def test_generate_image_size(self):
        img = SlotHistogram([1, 2, 3], board_width=300, board_height=200).generate_image()
        self.assertEqual(img.size, (300, 200))

    def test_blank_image_without_beans(self):
        img = SlotHistogram([0] * 10).generate_image()
        self.assertEqual(img.getpixel((350, 499)), BoardConfig.BACKGROUND_COLOR)

    def test_bars_use_half_colors(self):
        img = SlotHistogram([5, 0, 0, 0, 1]).generate_image()
        self.assertEqual(img.getpixel((10, 499)), BoardConfig.LEFT_COLOR)
        self.assertEqual(img.getpixel((10, 0)), BoardConfig.LEFT_COLOR)
        self.assertEqual(img.getpixel((600, 499)), BoardConfig.RIGHT_COLOR)
        self.assertEqual(img.getpixel((600, 0)), BoardConfig.BACKGROUND_COLOR)
        self.assertEqual(img.getpixel((200, 499)), BoardConfig.BACKGROUND_COLOR)

    def test_regenerating_clears_previous_bars(self):
        histogram = SlotHistogram([5, 0])
        histogram.generate_image()
        histogram.slot_counts = [0, 0]
        img = histogram.generate_image()
        self.assertEqual(img.getpixel((10, 499)), BoardConfig.BACKGROUND_COLOR)

    def test_rejects_non_positive_dimensions(self):
        with self.assertRaises(ValueError):
            SlotHistogram([1], board_width=0)

    def test_save_image(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "out" / "histogram.png"
            saved = SlotHistogram([1, 4, 6, 4, 1]).save_image(target)
            self.assertTrue(saved.exists())
            with Image.open(saved) as img:
                self.assertEqual(img.size, (BoardConfig.BOARD_WIDTH, BoardConfig.BOARD_HEIGHT))


class TestCommandLine(unittest.TestCase):
    def test_parse_valid_arguments(self):
        self.assertEqual(parse_args(["400", "luck"]), RunOptions(400, BeanMode.LUCK))
        self.assertEqual(parse_args(["0", "skill"]), RunOptions(0, BeanMode.SKILL))
        self.assertEqual(
            parse_args(["3", "luck", "--image"]),
            RunOptions(3, BeanMode.LUCK, True, None),
        )
        self.assertEqual(
            parse_args(["3", "skill", "--image", "out.png"]),
            RunOptions(3, BeanMode.SKILL, True, "out.png"),
        )

    def test_parse_rejects_malformed_arguments(self):
        for args in (
            [],
            ["400"],
            ["many", "luck"],
            ["-1", "luck"],
            ["4.5", "skill"],
            ["10", "chance"],
            ["10", "luck", "--verbose"],
            ["10", "luck", "--image", "a.png", "extra"],
        ):
            with self.subTest(args=args):
                self.assertIsNone(parse_args(args))

    def test_run_experiment_uses_ten_slots(self):
        logic = run_experiment(RunOptions(50, BeanMode.LUCK), rng=Random(4))
        self.assertEqual(logic.slot_count, BoardConfig.SLOT_COUNT)
        self.assertEqual(sum(logic.slot_counts), 50)

    def test_format_slot_counts(self):
        logic = BeanCounterLogic(3)
        text = format_slot_counts(logic)
        self.assertIn("Slot bean counts:\n0 0 0", text)
        self.assertIn("Average slot: 0.00", text)

    def test_main_prints_usage_on_bad_input(self):
        out = io.StringIO()
        with redirect_stdout(out):
            status = main(["-5", "luck"])
        self.assertEqual(status, 1)
        self.assertIn(USAGE, out.getvalue())

    def test_main_runs_experiment(self):
        out = io.StringIO()
        with redirect_stdout(out):
            status = main(["30", "skill"])
        self.assertEqual(status, 0)
        counts = out.getvalue().splitlines()[1].split()
        self.assertEqual(len(counts), BoardConfig.SLOT_COUNT)
        self.assertEqual(sum(int(c) for c in counts), 30)

    def test_main_with_zero_beans(self):
        out = io.StringIO()
        with redirect_stdout(out):
            status = main(["0", "luck"])
        self.assertEqual(status, 0)
        self.assertIn("0 0 0 0 0 0 0 0 0 0", out.getvalue())

    def test_main_test_mode(self):
        self.assertEqual(main(["test"]), 0)

    def test_main_saves_histogram(self):
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "beans.png"
            with redirect_stdout(io.StringIO()):
                status = main(["100", "luck", "--image", str(target)])
            self.assertEqual(status, 0)
            self.assertTrue(target.exists())


if __name__ == "__main__":
    unittest.main()
