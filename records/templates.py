"""
Starting points for new records.

Builds fresh Condition, Observation and Patient resources from form
values. Codes default to the SNOMED CT and HL7 systems the clinic uses.
"""

from records.editor import normalize_timestamp

SNOMED = 'http://snomed.info/sct'
LOINC = 'http://loinc.org'
UCUM = 'http://unitsofmeasure.org'
CONDITION_CLINICAL = 'http://hl7.org/fhir/ValueSet/condition-clinical'

CLINICAL_STATUSES = (
    'active', 'recurrence', 'relapse', 'inactive', 'remission', 'resolved', 'unknown',
)

OBSERVATION_STATUSES = (
    'registered', 'preliminary', 'final', 'amended', 'corrected', 'cancelled',
    'entered-in-error', 'unknown',
)

# Confirmed (SNOMED CT)
VERIFICATION_CONFIRMED = '609096000'
CLINICAL_FINDING = {'system': SNOMED, 'code': '408646000', 'display': 'Clinical finding'}


def patient_reference(patient_id):
    return {
        'type': 'Patient',
        'reference': f'Patient/{patient_id}',
        'identifier': {'value': patient_id},
    }


def new_condition(patient_id, code, display, clinical_status, recorded_date,
                  note='', note_author=None, recorder_reference=None,
                  recorder_type=None):
    """
    Build a Condition for ``patient_id``.

    Raises:
        ValueError: If ``clinical_status`` is not a known clinical status
        EditError: If ``recorded_date`` is not a valid timestamp
    """
    if clinical_status not in CLINICAL_STATUSES:
        raise ValueError(f'Unknown clinical status: {clinical_status}')

    condition = {
        'resourceType': 'Condition',
        'clinicalStatus': {
            'coding': [{
                'system': CONDITION_CLINICAL,
                'code': clinical_status,
                'display': clinical_status,
            }],
        },
        'verificationStatus': {
            'coding': [{'system': SNOMED, 'code': VERIFICATION_CONFIRMED}],
        },
        'category': [{'coding': [dict(CLINICAL_FINDING)]}],
        'severity': {'coding': [dict(CLINICAL_FINDING)]},
        'code': {
            'coding': [{'system': SNOMED, 'code': code, 'display': display}],
        },
        'bodySite': [{'coding': [dict(CLINICAL_FINDING)]}],
        'subject': patient_reference(patient_id),
        'recordedDate': normalize_timestamp(recorded_date),
    }

    if note or note_author:
        annotation = {'text': note}
        if note_author:
            annotation['authorString'] = note_author
        condition['note'] = [annotation]

    if recorder_reference:
        condition['recorder'] = {'reference': recorder_reference}
        if recorder_type:
            condition['recorder']['type'] = recorder_type

    return condition


def new_observation(patient_id, code, display, value=None, unit=None,
                    effective=None, status='final', note=''):
    """Build an Observation for ``patient_id`` with an optional quantity."""
    if status not in OBSERVATION_STATUSES:
        raise ValueError(f'Unknown observation status: {status}')

    observation = {
        'resourceType': 'Observation',
        'status': status,
        'code': {'coding': [{'system': LOINC, 'code': code, 'display': display}]},
        'subject': patient_reference(patient_id),
    }
    if effective:
        observation['effectiveDateTime'] = normalize_timestamp(effective)
    if value is not None:
        observation['valueQuantity'] = {
            'value': value, 'unit': unit or '', 'system': UCUM, 'code': unit or '',
        }
    if note:
        observation['note'] = [{'text': note}]
    return observation


def new_patient(family, given=None, gender=None, birth_date=None,
                identifier=None, identifier_system=None):
    patient = {
        'resourceType': 'Patient',
        'name': [{'family': family, 'given': list(given or [])}],
    }
    if gender:
        patient['gender'] = gender
    if birth_date:
        patient['birthDate'] = birth_date
    if identifier:
        ident = {'value': identifier}
        if identifier_system:
            ident['system'] = identifier_system
        patient['identifier'] = [ident]
    return patient
