"""
Géométrie des documents
=======================

Les mises en page sont décrites en millimètres, origine en haut à gauche
(espace de conception). reportlab dessine en points, origine en bas à gauche
(espace de rendu). Toutes les conversions passent par ce module.
"""

from dataclasses import dataclass
from reportlab.lib.pagesizes import A4

MM_TO_PT = 2.834645669

PAGE_WIDTH_MM = 210
PAGE_HEIGHT_MM = 297
PAGE_WIDTH_PT, PAGE_HEIGHT_PT = A4


@dataclass(frozen=True)
class Rect:
    """Rectangle en millimètres, (x, y) = coin supérieur gauche"""
    x: float
    y: float
    width: float
    height: float

    def inset(self, padding: float) -> 'Rect':
        return Rect(
            self.x + padding,
            self.y + padding,
            max(self.width - 2 * padding, 0),
            max(self.height - 2 * padding, 0),
        )

    def to_dict(self) -> dict:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}

    @classmethod
    def from_dict(cls, data: dict) -> 'Rect':
        return cls(
            float(data['x']), float(data['y']),
            float(data['width']), float(data['height'])
        )


def mm_to_pt(value: float) -> float:
    return value * MM_TO_PT


def pt_to_mm(value: float) -> float:
    return value / MM_TO_PT


def flip_y(y_mm: float, height_mm: float = 0, page_height_pt: float = PAGE_HEIGHT_PT) -> float:
    """
    Convertit une ordonnée haut-gauche (mm) en ordonnée bas-gauche (pt).

    Avec une hauteur, renvoie le bas de la boîte, ce qu'attend canvas.rect().
    """
    return page_height_pt - (y_mm + height_mm) * MM_TO_PT


def unflip_y(y_pt: float, height_mm: float = 0, page_height_pt: float = PAGE_HEIGHT_PT) -> float:
    """Inverse de flip_y"""
    return (page_height_pt - y_pt) / MM_TO_PT - height_mm


def rect_to_pt(rect: Rect, page_height_pt: float = PAGE_HEIGHT_PT):
    """Renvoie (x, y, largeur, hauteur) en points, y = bas de la boîte"""
    return (
        mm_to_pt(rect.x),
        flip_y(rect.y, rect.height, page_height_pt),
        mm_to_pt(rect.width),
        mm_to_pt(rect.height),
    )


def fit_within(img_width: float, img_height: float, box_width: float, box_height: float):
    """Dimensions d'une image inscrite dans une boîte, aspect ratio préservé"""
    if img_width <= 0 or img_height <= 0:
        raise ValueError('Invalid image dimensions')
    scale = min(box_width / img_width, box_height / img_height)
    return img_width * scale, img_height * scale
