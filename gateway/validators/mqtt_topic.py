"""
MQTT topic validation.

Topic names (publish) are concrete; topic filters (subscribe) may carry the
`+` and `#` wildcards, each occupying a whole level and `#` only last.
"""

# MQTT strings are length-prefixed with two bytes
_MAX_TOPIC_BYTES = 65535


def _is_topic_string(topic: object) -> bool:
    if not isinstance(topic, str) or not topic.strip():
        return False
    if "\x00" in topic:
        return False
    return len(topic.encode("utf-8")) <= _MAX_TOPIC_BYTES


def is_valid_topic_name(topic: object) -> bool:
    """True for a topic a message may be published to."""
    if not _is_topic_string(topic):
        return False
    return "+" not in topic and "#" not in topic  # type: ignore[operator]


def is_valid_topic_filter(topic: object) -> bool:
    """
    True for a subscription filter.

    Examples:
        sensors/#, sensors/+/temperature, #  -> valid
        sensors/#/x, sensors/temp#, a+/b     -> invalid
    """
    if not _is_topic_string(topic):
        return False
    levels = topic.split("/")  # type: ignore[union-attr]
    for index, level in enumerate(levels):
        if "#" in level and (level != "#" or index != len(levels) - 1):
            return False
        if "+" in level and level != "+":
            return False
    return True
