"""
Rover Ground Station - OLED Display
128x32 SSD1306 on the radio bonnet, text rendered with Pillow
"""

import logging
from typing import Dict, Optional

from PIL import Image, ImageDraw, ImageFont

from rover_gs import __version__
from rover_gs.common.errors import DisplayError

logger = logging.getLogger(__name__)

LINE_HEIGHT = 8


def banner_text() -> str:
    return f"Rover Ground\nControl v{__version__}"


def format_status(point=None, link_stats: Optional[Dict] = None, pending: int = 0) -> str:
    """
    Short status screen: four lines of at most 21 characters

    Args:
        point: Latest TelemetryPoint, or None
        link_stats: RoverLink.get_stats()
        pending: Queued command sequences
    """
    link_stats = link_stats or {}
    rssi = link_stats.get('last_rssi', 0)

    if point is None:
        lines = ["Waiting for rover", f"RX {link_stats.get('packets_received', 0)}"]
    else:
        lines = [
            f"{point.rover_time} RSSI {point.rssi}",
            f"{point.latitude:.5f},{point.longitude:.5f}",
            f"Sat {point.satellites} Mem {point.free_memory}",
            point.status or "-",
        ]
        rssi = point.rssi

    if pending:
        lines[-1] = f"CMD queued: {pending}"
    elif point is None:
        lines.append(f"RSSI {rssi}")

    return "\n".join(line[:21] for line in lines)


class Display:
    """Station status display"""

    def show(self, text: str):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError

    def close(self):
        pass


class NullDisplay(Display):
    """No display attached; remembers what would have been shown"""

    def __init__(self):
        self.text = ""

    def show(self, text: str):
        self.text = text
        logger.debug(f"Display: {text!r}")

    def clear(self):
        self.text = ""


class OledDisplay(Display):
    """
    SSD1306 OLED driven over I2C

    Text is drawn with Pillow's default bitmap font, one line per 8 pixels.
    """

    def __init__(self, width: int = 128, height: int = 32, address: int = 0x3C):
        self.width = width
        self.height = height
        self.address = address
        self._oled = None
        self._font = ImageFont.load_default()

    def init(self):
        """Open the display. Raises DisplayError on failure."""
        try:
            import board
            import busio
            import adafruit_ssd1306
        except (ImportError, NotImplementedError) as e:
            raise DisplayError(
                f"SSD1306 libraries not available: {e}",
                "Install with 'pip install rover-gs[pi]' or run with --no-display"
            ) from e

        try:
            i2c = busio.I2C(board.SCL, board.SDA)
            self._oled = adafruit_ssd1306.SSD1306_I2C(self.width, self.height, i2c, addr=self.address)
        except (OSError, ValueError, RuntimeError) as e:
            raise DisplayError(
                f"Could not open OLED at 0x{self.address:02x}: {e}",
                "Check that I2C is enabled (raspi-config)"
            ) from e

        self.clear()

    def render(self, text: str) -> 'Image.Image':
        """Render text to a 1-bit image the size of the display"""
        image = Image.new('1', (self.width, self.height))
        draw = ImageDraw.Draw(image)
        max_lines = self.height // LINE_HEIGHT
        for i, line in enumerate(text.split("\n")[:max_lines]):
            draw.text((0, i * LINE_HEIGHT), line, font=self._font, fill=255)
        return image

    def show(self, text: str):
        if self._oled is None:
            raise DisplayError("Display not initialized")
        try:
            self._oled.fill(0)
            self._oled.image(self.render(text))
            self._oled.show()
        except (OSError, ValueError) as e:
            raise DisplayError(f"Could not write to OLED: {e}") from e

    def clear(self):
        if self._oled is None:
            raise DisplayError("Display not initialized")
        try:
            self._oled.fill(0)
            self._oled.show()
        except OSError as e:
            raise DisplayError(f"Could not clear OLED: {e}") from e

    def close(self):
        if self._oled is not None:
            try:
                self.clear()
            except DisplayError as e:
                logger.warning(f"{e}")
            self._oled = None
