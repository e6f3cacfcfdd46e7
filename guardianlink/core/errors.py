"""Error taxonomy for the emergency engine.

Every error carries a ``user_message`` suitable for showing to the person
holding the phone; ``code`` is the stable machine-readable name used by the
HTTP adapter.
"""

from __future__ import annotations


class GuardianError(Exception):
    code = "guardian_error"
    user_message = "Something went wrong."

    def __init__(self, detail: str = "", *, user_message: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class PermissionDenied(GuardianError):
    code = "permission_denied"

    def __init__(self, capability: str, detail: str = "") -> None:
        self.capability = capability
        super().__init__(
            detail or f"{capability} permission denied",
            user_message=(
                f"{capability.capitalize()} access is denied. Enable it in the "
                f"device settings, then switch protection back on."
            ),
        )


class LocationUnavailable(GuardianError):
    code = "location_unavailable"
    user_message = "Your location could not be determined. The alert was sent without it."


class NoRecipients(GuardianError):
    code = "no_recipients"
    user_message = "Add at least one guardian before raising an alert."


class ChannelWriteFailure(GuardianError):
    code = "channel_write_failure"
    user_message = "A guardian could not be reached."

    def __init__(self, channel_key: str, detail: str = "") -> None:
        self.channel_key = channel_key
        super().__init__(detail or f"write to {channel_key} failed")


class TriggerEngineError(GuardianError):
    code = "trigger_engine_error"
    user_message = "Voice detection stopped. Check the microphone permission and re-arm."


class TriggerInProgress(GuardianError):
    code = "trigger_in_progress"
    user_message = "An alert is already being raised."


class AlertAlreadyActive(GuardianError):
    code = "alert_already_active"
    user_message = "An alert is already live. Resolve it before raising a new one."

    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"alert {alert_id} is live")


class AlertNotFound(GuardianError):
    code = "alert_not_found"
    user_message = "That alert does not exist."


class AlertWriteFailure(GuardianError):
    code = "alert_write_failure"
    user_message = "The alert could not be saved. Check your connection and try again."


class NotAParticipant(GuardianError):
    code = "not_a_participant"
    user_message = "You are not part of this conversation."
