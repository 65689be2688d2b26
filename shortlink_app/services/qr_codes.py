"""
QR code collaborator.

The service never renders images; it stores a reference that a QR
provider can render for the short URL.
"""

from abc import ABC, abstractmethod
from urllib.parse import quote

from shortlink_app.config import settings


class QRCodeProvider(ABC):
    """Given a URL, returns an embeddable image reference"""

    @abstractmethod
    def image_url(self, url: str) -> str:
        pass


class TemplateQRCodeProvider(QRCodeProvider):
    """
    Formats a provider URL template with the encoded target.

    Example:
        >>> TemplateQRCodeProvider("https://qr.example/?data={url}").image_url("https://s.io/abc")
        'https://qr.example/?data=https%3A%2F%2Fs.io%2Fabc'
    """

    def __init__(self, template: str = None):
        self.template = template or settings.qr_code_template

    def image_url(self, url: str) -> str:
        return self.template.format(url=quote(url, safe=""))
