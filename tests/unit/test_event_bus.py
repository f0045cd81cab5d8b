import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from lifesim.application.services.event_bus import EventBus
from lifesim.domain.events import WalletChanged


class EventBusTests(unittest.TestCase):
    def test_publish_notifies_handlers_for_event_type_only(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        class Other:
            pass

        bus.subscribe(WalletChanged, lambda evt: seen.append(f"wallet:{evt.balance}"))
        bus.subscribe(Other, lambda evt: seen.append("other"))

        bus.publish(WalletChanged(user_id="1", balance=1900, delta=-100, reason="transfer"))

        self.assertEqual(["wallet:1900"], seen)

    def test_publish_honors_priority_then_registration_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        class ExampleEvent:
            pass

        bus.subscribe(ExampleEvent, lambda evt: seen.append("normal"))
        bus.subscribe(ExampleEvent, lambda evt: seen.append("late"), priority=200)
        bus.subscribe(ExampleEvent, lambda evt: seen.append("early"), priority=10)
        bus.subscribe(ExampleEvent, lambda evt: seen.append("normal-2"))

        bus.publish(ExampleEvent())

        self.assertEqual(["early", "normal", "normal-2", "late"], seen)

    def test_failing_handler_is_isolated(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        class ExampleEvent:
            pass

        def _broken(_evt) -> None:
            raise RuntimeError("boom")

        bus.subscribe(ExampleEvent, _broken, priority=10)
        bus.subscribe(ExampleEvent, lambda evt: seen.append("still-runs"), priority=20)

        with self.assertLogs("lifesim.application.services.event_bus", level="ERROR"):
            bus.publish(ExampleEvent())

        self.assertEqual(["still-runs"], seen)
        self.assertEqual(1, len(bus.last_publish_errors()))

        bus.publish(ExampleEvent())
        self.assertEqual(1, len(bus.last_publish_errors()))

    def test_unsubscribe_removes_only_that_handler(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        class ExampleEvent:
            pass

        def _first(_evt) -> None:
            seen.append("first")

        bus.subscribe(ExampleEvent, _first)
        bus.subscribe(ExampleEvent, lambda evt: seen.append("second"))
        bus.unsubscribe(ExampleEvent, _first)
        bus.unsubscribe(WalletChanged, _first)

        bus.publish(ExampleEvent())

        self.assertEqual(["second"], seen)


if __name__ == "__main__":
    unittest.main()
