"""Desktop Notification Manager for Stowage"""

import logging
import shutil
import subprocess


class NotificationManager:
    """Sends best-effort desktop notifications for backup and restore runs"""

    def __init__(self):
        self.logger = logging.getLogger("NotificationManager")
        self.enabled = self._check_notification_support()

    def _check_notification_support(self) -> bool:
        """Check if desktop notifications are supported"""
        if shutil.which("notify-send"):
            self.logger.debug("Desktop notifications enabled (notify-send)")
            return True

        self.logger.debug("Desktop notifications not available")
        return False

    def send(self, title: str, message: str, urgency: str = "normal", icon: str | None = None) -> bool:
        """Send a desktop notification

        Args:
            title: Notification title
            message: Notification message
            urgency: Urgency level ('low', 'normal', 'critical')
            icon: Optional icon name

        Returns:
            True if notification sent successfully, False otherwise
        """
        if not self.enabled:
            return False

        try:
            cmd = ["notify-send", f"--urgency={urgency}"]

            if icon:
                cmd.extend(["--icon", icon])

            cmd.extend([title, message])

            subprocess.run(cmd, check=False, capture_output=True, timeout=10)
            return True

        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning(f"Failed to send notification: {e}")
            return False

    def notify_success(self, operation: str, backup_id: str, detail: str = "") -> bool:
        """Notify that a backup or restore completed"""
        message = f"Backup: {backup_id}"
        if detail:
            message += f"\n{detail}"
        return self.send(f"{operation.capitalize()} Successful", message, urgency="normal", icon="emblem-default")

    def notify_failure(self, operation: str, backup_id: str | None, error: str = "") -> bool:
        """Notify that a backup or restore failed"""
        message = f"Backup: {backup_id or 'unknown'}"
        if error:
            # Truncate long error messages
            error_short = error[:100] + "..." if len(error) > 100 else error
            message += f"\nError: {error_short}"
        return self.send(f"{operation.capitalize()} Failed", message, urgency="critical", icon="dialog-error")
