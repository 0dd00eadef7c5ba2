from rest_framework import serializers


class VersionSerializer(serializers.Serializer):
    """Serializer for one (timestamp, value) version of a key."""

    timestamp = serializers.IntegerField(
        help_text="Instant the version became current, in nanoseconds since the epoch",
    )
    value = serializers.CharField(allow_blank=True)


class KeyValueSerializer(VersionSerializer):
    """Serializer for a key with one of its versions."""

    key = serializers.CharField()


class KeyValueWriteSerializer(serializers.Serializer):
    """Serializer for writing a new value for a key."""

    value = serializers.CharField(
        allow_blank=True,
        trim_whitespace=False,
        help_text="The value to store for the key. Surrounding whitespace is trimmed before storing.",
    )


class ReadQuerySerializer(serializers.Serializer):
    """Query parameters for reading a key."""

    at = serializers.IntegerField(
        required=False,
        help_text="Return the earliest version at or after this instant (nanoseconds since the epoch)",
    )


class HistoryQuerySerializer(serializers.Serializer):
    """Query parameters for reading a key's history."""

    limit = serializers.IntegerField(required=False, min_value=1)

    def __init__(self, *args, max_limit: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_limit = max_limit

    def validate_limit(self, limit):
        if limit > self.max_limit:
            raise serializers.ValidationError(
                f"limit {limit} exceeds maximum of {self.max_limit}"
            )
        return limit


class HistoryResponseSerializer(serializers.Serializer):
    """Serializer for history responses, newest version first."""

    key = serializers.CharField()
    count = serializers.IntegerField(help_text="Number of versions returned")
    results = VersionSerializer(many=True, help_text="Versions, newest first")
    has_more = serializers.BooleanField(
        help_text="Whether older versions exist beyond this page"
    )
