"""
Unit tests for workload discovery.
"""

import unittest
from unittest.mock import MagicMock
from errors import AmbiguousMatchError, LocateError, NotFoundError
from locator import (
    AGENT,
    SERVER,
    ContainerImageStrategy,
    ContainerLabelStrategy,
    ContainerLogStrategy,
    WorkloadLocator,
    container_locator,
)


def container(container_id, name, image):
    return {"Id": container_id, "Names": [f"/{name}"], "Image": image}


class TestContainerStrategies(unittest.TestCase):
    """Test the individual Docker lookup strategies."""

    def setUp(self):
        self.api = MagicMock()

    def test_label_single_match(self):
        """Test a single labelled container is returned."""
        self.api.containers.return_value = [container("c1", "agent", "portainer/agent:2.18")]

        ref = ContainerLabelStrategy(self.api, "io.portainer.agent=true").find()

        self.assertEqual(ref.id, "c1")
        self.assertEqual(ref.name, "agent")
        self.api.containers.assert_called_once_with(
            filters={"status": "running", "label": "io.portainer.agent=true"}
        )

    def test_label_ambiguous(self):
        """Test several labelled containers are an error."""
        self.api.containers.return_value = [
            container("c1", "agent1", "portainer/agent"),
            container("c2", "agent2", "portainer/agent"),
        ]

        with self.assertRaises(AmbiguousMatchError):
            ContainerLabelStrategy(self.api, "io.portainer.agent=true").find()

    def test_label_no_match(self):
        """Test no labelled container returns None."""
        self.api.containers.return_value = []
        self.assertIsNone(ContainerLabelStrategy(self.api, "io.portainer.agent=true").find())

    def test_image_prefix_first_match(self):
        """Test the first container with a known image prefix wins."""
        self.api.containers.return_value = [
            container("c0", "nginx", "nginx:latest"),
            container("c1", "agent", "portainercd/agent:develop"),
            container("c2", "agent2", "portainer/agent:2.19"),
        ]

        ref = ContainerImageStrategy(self.api, AGENT.image_prefixes).find()

        self.assertEqual(ref.id, "c1")

    def test_logs_banner(self):
        """Test a container is matched on its startup banner."""
        self.api.containers.return_value = [
            container("c0", "nginx", "nginx"),
            container("c1", "custom", "registry.local/agent"),
        ]
        streams = {
            "c0": [b"listening on 80\n"],
            "c1": [b"2024/01/01 [INFO] Starting Agent ", b"API server\nready\n"],
        }
        self.api.logs.side_effect = lambda cid, **kwargs: iter(streams[cid])

        ref = ContainerLogStrategy(self.api, AGENT.log_banner).find()

        self.assertEqual(ref.id, "c1")

    def test_logs_banner_on_last_line(self):
        """Test a banner without a trailing newline is still matched."""
        self.api.containers.return_value = [container("c1", "portainer", "custom")]
        self.api.logs.return_value = iter([b"level=info msg=\"starting Portainer\""])

        ref = ContainerLogStrategy(self.api, SERVER.log_banner).find()

        self.assertEqual(ref.id, "c1")

    def test_log_stream_closed(self):
        """Test the log stream is closed after reading."""
        self.api.containers.return_value = [container("c1", "agent", "custom")]
        stream = MagicMock()
        stream.__iter__.return_value = iter([b"nothing here\n"])
        self.api.logs.return_value = stream

        self.assertIsNone(ContainerLogStrategy(self.api, AGENT.log_banner).find())
        stream.close.assert_called_once()

    def test_logs_read_without_following(self):
        """Test existing logs are read once, not followed."""
        self.api.containers.return_value = [container("c1", "agent", "custom")]
        self.api.logs.return_value = iter([b"nothing here\n"])

        self.assertIsNone(ContainerLogStrategy(self.api, AGENT.log_banner).find())

        self.api.logs.assert_called_once_with(
            "c1", stdout=True, stderr=True, stream=True, follow=False
        )


class TestWorkloadLocator(unittest.TestCase):
    """Test the strategy chain."""

    def strategy(self, result=None, error=None):
        strategy = MagicMock()
        strategy.name = "fake"
        if error is not None:
            strategy.find.side_effect = error
        else:
            strategy.find.return_value = result
        return strategy

    def test_first_match_wins(self):
        """Test later strategies are not consulted after a match."""
        ref = MagicMock()
        second = self.strategy(result=MagicMock())

        found = WorkloadLocator([self.strategy(result=ref), second]).locate()

        self.assertIs(found, ref)
        second.find.assert_not_called()

    def test_falls_through_on_no_match(self):
        """Test an empty strategy falls through to the next one."""
        ref = MagicMock()
        found = WorkloadLocator([self.strategy(), self.strategy(result=ref)]).locate()
        self.assertIs(found, ref)

    def test_not_found(self):
        """Test no match anywhere."""
        with self.assertRaises(NotFoundError):
            WorkloadLocator([self.strategy(), self.strategy()]).locate()

    def test_ambiguity_does_not_fall_through(self):
        """Test an ambiguous match stops the chain."""
        third = self.strategy(result=MagicMock())

        with self.assertRaises(AmbiguousMatchError):
            WorkloadLocator([self.strategy(error=AmbiguousMatchError("two")), third]).locate()

        third.find.assert_not_called()

    def test_api_error_aborts(self):
        """Test a transport error aborts the lookup."""
        second = self.strategy(result=MagicMock())

        with self.assertRaises(LocateError):
            WorkloadLocator([self.strategy(error=ConnectionError("refused")), second]).locate()

        second.find.assert_not_called()

    def test_container_locator_chain(self):
        """Test the Docker chain runs label, image then logs."""
        api = MagicMock()
        api.containers.side_effect = [
            [],
            [container("c9", "portainer", "portainer/portainer-ee:2.19")],
        ]

        ref = container_locator(api, SERVER).locate()

        self.assertEqual(ref.id, "c9")
        api.logs.assert_not_called()


if __name__ == "__main__":
    unittest.main()
