import sys
import threading
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services import remote_calls
from lifesim.domain.errors import RemoteTimeoutError


class CallWithTimeoutTests(unittest.TestCase):
    def tearDown(self) -> None:
        remote_calls.shutdown_remote_calls(wait=True)

    def test_zero_timeout_runs_inline_without_a_pool(self) -> None:
        remote_calls.shutdown_remote_calls()
        caller = threading.current_thread()

        ran_on = remote_calls.call_with_timeout(threading.current_thread, timeout=0)

        self.assertIs(caller, ran_on)
        self.assertIsNone(remote_calls._EXECUTOR)

    def test_slow_call_times_out(self) -> None:
        release = threading.Event()
        try:
            with self.assertLogs("lifesim.application.services.remote_calls", level="WARNING"):
                with self.assertRaises(RemoteTimeoutError):
                    remote_calls.call_with_timeout(lambda: release.wait(5), timeout=0.05, label="users select")
        finally:
            release.set()

    def test_pool_restarts_after_shutdown(self) -> None:
        self.assertEqual(3, remote_calls.call_with_timeout(lambda: 3, timeout=1))

        remote_calls.shutdown_remote_calls(wait=True)
        self.assertIsNone(remote_calls._EXECUTOR)

        self.assertEqual(4, remote_calls.call_with_timeout(lambda: 4, timeout=1))
        self.assertIsNotNone(remote_calls._EXECUTOR)


if __name__ == "__main__":
    unittest.main()
