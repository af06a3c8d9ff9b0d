"""
Tests for MQTT topic name and filter validation.
"""

import pytest

from gateway.validators.mqtt_topic import is_valid_topic_filter, is_valid_topic_name


class TestTopicName:
    @pytest.mark.parametrize("topic", ["sensors/1", "a", "/leading/slash", "sensors//empty-level", "données/temp"])
    def test_valid(self, topic):
        assert is_valid_topic_name(topic)

    @pytest.mark.parametrize("topic", ["", "   ", "sensors/#", "sensors/+/temp", "a\x00b", None, 5, b"sensors/1"])
    def test_invalid(self, topic):
        assert not is_valid_topic_name(topic)

    def test_length_limit_counts_bytes(self):
        assert is_valid_topic_name("a" * 65535)
        assert not is_valid_topic_name("é" * 32768)


class TestTopicFilter:
    @pytest.mark.parametrize("topic", ["#", "+", "sensors/#", "sensors/+/temp", "+/+/#", "sensors/1"])
    def test_valid(self, topic):
        assert is_valid_topic_filter(topic)

    @pytest.mark.parametrize("topic", ["", "sensors/#/temp", "sensors/temp#", "sensors/a+", "##", {"topic": "a"}])
    def test_invalid(self, topic):
        assert not is_valid_topic_filter(topic)
