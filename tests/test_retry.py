from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest.mock import Mock, call, patch

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from docker_step.retry import retry, retry_delay_seconds


class RetryTests(unittest.TestCase):
    def test_success_on_first_attempt_does_not_sleep(self) -> None:
        action = Mock(return_value=0)
        sleep = Mock()

        self.assertEqual(retry(3, action, sleep=sleep), 0)
        self.assertEqual(action.call_count, 1)
        sleep.assert_not_called()

    def test_fails_twice_then_succeeds(self) -> None:
        action = Mock(side_effect=[1, 1, 0])
        sleep = Mock()

        self.assertEqual(retry(3, action, sleep=sleep), 0)
        self.assertEqual(action.call_count, 3)
        self.assertEqual(sleep.call_args_list, [call(0), call(2)])

    def test_always_failing_returns_last_status(self) -> None:
        action = Mock(side_effect=[1, 2, 7])
        sleep = Mock()

        self.assertEqual(retry(3, action, sleep=sleep), 7)
        self.assertEqual(action.call_count, 3)
        self.assertEqual(sleep.call_args_list, [call(0), call(2)])

    def test_zero_max_attempts_tries_once(self) -> None:
        action = Mock(return_value=4)
        sleep = Mock()

        self.assertEqual(retry(0, action, sleep=sleep), 4)
        self.assertEqual(action.call_count, 1)
        sleep.assert_not_called()

    def test_uses_time_sleep_by_default(self) -> None:
        action = Mock(side_effect=[1, 0])
        with patch("docker_step.retry.time.sleep") as sleep_mock:
            self.assertEqual(retry(2, action), 0)
        sleep_mock.assert_called_once_with(0)

    def test_delays_grow_linearly(self) -> None:
        self.assertEqual([retry_delay_seconds(attempt) for attempt in range(1, 5)], [0, 2, 4, 6])


if __name__ == "__main__":
    unittest.main()
