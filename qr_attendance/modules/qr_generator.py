"""
QR Code Generator Module - QR Attendance Session System

This module renders the attendance QR code printed on a student's ID. The
encoded text is the plain payload the scanner parses
("FULL NAME STUDENTID DEPARTMENT"), so a generated code always round-trips
through the QR parser.

Features:
- QR code image generation for a student payload
- Optional caption with the student's name, ID and department
- Base64 PNG output for the JSON API
"""

import base64
import io
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont

from qr_attendance.modules.qr_parser import ScanPayload, format_qr_payload, validate_qr_data


class QRGenerator:
    """
    QR code generator for student attendance badges.
    """

    ERROR_CORRECTION = {
        'L': qrcode.constants.ERROR_CORRECT_L,
        'M': qrcode.constants.ERROR_CORRECT_M,
        'Q': qrcode.constants.ERROR_CORRECT_Q,
        'H': qrcode.constants.ERROR_CORRECT_H
    }

    def __init__(self, box_size: int = 10, border: int = 4, error_correction: str = 'M',
                 version: int = 1, fill_color: str = 'black', back_color: str = 'white'):
        """
        Initialize the QR code generator.

        Args:
            box_size (int): Size of each box in pixels
            border (int): Border width in boxes (minimum is 4)
            error_correction (str): One of L, M, Q, H
            version (int): Initial QR version, grown to fit the data
            fill_color (str): Module colour
            back_color (str): Background colour
        """
        self.logger = logging.getLogger(__name__)
        self.default_settings = {
            'version': version,
            'error_correction': self.ERROR_CORRECTION.get(error_correction, qrcode.constants.ERROR_CORRECT_M),
            'box_size': box_size,
            'border': border,
            'fill_color': fill_color,
            'back_color': back_color
        }

    def generate_student_qr_code(self, payload: ScanPayload, with_caption: bool = False,
                                 custom_settings: Optional[dict] = None) -> Dict[str, Any]:
        """
        Generate a QR code image for a student.

        Args:
            payload (ScanPayload): Student identity to encode
            with_caption (bool): Print name, ID and department under the code
            custom_settings (dict): Overrides for the default QR settings

        Returns:
            Dict[str, Any]: qr_data, image_base64, image_size and filename
        """
        qr_data = format_qr_payload(payload)
        # Refuse to print a code the scanner would reject
        validate_qr_data(qr_data)

        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(qr_data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        ).convert('RGB')

        if with_caption:
            img = self._add_caption(img, payload)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()

        self.logger.info(f"QR code generated for student {payload.student_id}")

        return {
            'qr_data': qr_data,
            'image_base64': img_base64,
            'image_size': img.size,
            'filename': f"qr_{payload.student_id}_{datetime.now().strftime('%Y%m%d')}.png"
        }

    def _add_caption(self, qr_img: Image.Image, payload: ScanPayload) -> Image.Image:
        """Extend the image downwards and draw the student's details centred."""
        width, height = qr_img.size
        canvas = Image.new('RGB', (width, height + 80), 'white')
        canvas.paste(qr_img, (0, 0))

        draw = ImageDraw.Draw(canvas)
        font = ImageFont.load_default()

        text_y = height + 10
        for line in (payload.full_name, payload.student_id, payload.department):
            bbox = draw.textbbox((0, 0), line, font=font)
            line_width = bbox[2] - bbox[0]
            draw.text(((width - line_width) // 2, text_y), line, fill='black', font=font)
            text_y += 20

        return canvas
