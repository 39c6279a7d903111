"""
Damage type taxonomy - categories, fault attribution and penalties.

Read-only lookup table consumed by the damage report workflow. Fault and
penalty feed reporting only; they never change the released payment.
"""
from decimal import Decimal
from typing import Optional

from .models import Severity, Urgency


DAMAGE_CATEGORIES = {
    'fabric_defects': {
        'label': 'Fabric Defects',
        'operator_fault': False,  # Supply issue
        'types': {
            'fabric_hole': {'label': 'Fabric Hole', 'severity': Severity.MAJOR},
            'fabric_stain': {'label': 'Fabric Stain/Dirt', 'severity': Severity.MINOR},
            'fabric_tear': {'label': 'Fabric Tear', 'severity': Severity.MAJOR},
            'color_bleeding': {'label': 'Color Bleeding', 'severity': Severity.MAJOR},
            'fabric_shrinkage': {'label': 'Fabric Shrinkage', 'severity': Severity.MAJOR},
        }
    },
    'cutting_issues': {
        'label': 'Cutting Issues',
        'operator_fault': False,  # Cutting team's responsibility
        'types': {
            'cutting_pattern_wrong': {'label': 'Wrong Cutting Pattern', 'severity': Severity.MAJOR},
            'size_mismatch': {'label': 'Size Mismatch', 'severity': Severity.MAJOR},
            'cutting_not_straight': {'label': 'Uneven Cutting', 'severity': Severity.MINOR},
            'notch_missing': {'label': 'Missing Notches', 'severity': Severity.MINOR},
        }
    },
    'color_issues': {
        'label': 'Color Issues',
        'operator_fault': False,
        'types': {
            'color_shade_mismatch': {'label': 'Color Shade Mismatch', 'severity': Severity.MAJOR},
            'color_fading': {'label': 'Color Fading', 'severity': Severity.MINOR},
            'uneven_dyeing': {'label': 'Uneven Dyeing', 'severity': Severity.MAJOR},
        }
    },
    'stitching_defects': {
        'label': 'Stitching Defects',
        'operator_fault': True,
        'types': {
            'skip_stitch': {'label': 'Skip Stitch', 'severity': Severity.MINOR, 'penalty': Decimal('0.1')},
            'thread_break': {'label': 'Thread Breakage', 'severity': Severity.MINOR, 'penalty': Decimal('0.05')},
            'uneven_stitching': {'label': 'Uneven Stitching', 'severity': Severity.MINOR, 'penalty': Decimal('0.1')},
            'wrong_stitch_type': {'label': 'Wrong Stitch Type', 'severity': Severity.MAJOR, 'penalty': Decimal('0.25')},
        }
    },
    'machine_related': {
        'label': 'Machine Issues',
        'operator_fault': False,  # Maintenance issue
        'types': {
            'needle_damage': {'label': 'Needle Damage/Marks', 'severity': Severity.MINOR},
            'oil_stain_machine': {'label': 'Machine Oil Stain', 'severity': Severity.MINOR},
            'tension_marks': {'label': 'Tension Marks', 'severity': Severity.MINOR},
        }
    },
    'handling_damage': {
        'label': 'Handling Damage',
        'operator_fault': True,
        'types': {
            'wrinkles': {'label': 'Wrinkles/Creases', 'severity': Severity.MINOR, 'penalty': Decimal('0.05')},
            'stretching': {'label': 'Fabric Stretching', 'severity': Severity.MINOR, 'penalty': Decimal('0.1')},
            'dirt_from_hands': {'label': 'Dirt from Hands', 'severity': Severity.MINOR, 'penalty': Decimal('0.05')},
        }
    },
}

SEVERITY_MULTIPLIER = {
    Severity.MINOR: Decimal('1'),
    Severity.MAJOR: Decimal('1.5'),
    Severity.SEVERE: Decimal('2'),
}

URGENCY_LEVELS = Urgency.ALL


def get_damage_type(type_id: str) -> Optional[dict]:
    """
    Look up a damage type by id.

    Returns:
        Dict with id, label, category, severity, operator_fault and penalty,
        or None for an unknown type
    """
    for category_id, category in DAMAGE_CATEGORIES.items():
        entry = category['types'].get(type_id)
        if entry:
            return {
                'id': type_id,
                'label': entry['label'],
                'category': category_id,
                'severity': entry['severity'],
                'operator_fault': category['operator_fault'],
                'penalty': entry.get('penalty', Decimal('0')),
            }
    return None


def is_operator_fault(type_id: str) -> bool:
    damage_type = get_damage_type(type_id)
    return damage_type['operator_fault'] if damage_type else False


def get_damage_penalty(type_id: str, severity: str = Severity.MINOR) -> Decimal:
    """
    Penalty fraction for a damage type, scaled by severity.
    Non-fault and unknown types carry no penalty.
    """
    damage_type = get_damage_type(type_id)
    if not damage_type or not damage_type['operator_fault']:
        return Decimal('0')
    return damage_type['penalty'] * SEVERITY_MULTIPLIER.get(severity, Decimal('1'))
