from datetime import date, datetime, time

from pydantic import BaseModel, field_validator, model_validator

from scheduling.models.appointment import APPOINTMENT_STATUSES
from scheduling.models.slot import SLOT_STATUSES
from scheduling.services.appointments import PatientIdentity

MAX_SYMPTOMS_LENGTH = 600


def _normalize_required(value: str, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field_name} is required.')
    return normalized


def _normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class PatientFields(BaseModel):
    patient_name: str
    patient_phone: str
    patient_id: str | None = None
    patient_email: str | None = None
    symptoms: str | None = None

    @field_validator('patient_name')
    @classmethod
    def validate_patient_name(cls, value: str) -> str:
        return _normalize_required(value, 'Patient name')

    @field_validator('patient_phone')
    @classmethod
    def validate_patient_phone(cls, value: str) -> str:
        return _normalize_required(value, 'Patient phone')

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str | None) -> str | None:
        return _normalize_optional(value)

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        return normalized.lower() if normalized else None

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str | None) -> str | None:
        normalized = _normalize_optional(value)
        if normalized and len(normalized) > MAX_SYMPTOMS_LENGTH:
            raise ValueError(f'Symptoms must be {MAX_SYMPTOMS_LENGTH} characters or fewer.')
        return normalized

    def to_identity(self) -> PatientIdentity:
        return PatientIdentity(
            name=self.patient_name,
            phone=self.patient_phone,
            patient_id=self.patient_id,
            email=self.patient_email,
            symptoms=self.symptoms,
        )


class BookSlotRequest(PatientFields):
    pass


class CreateAppointmentRequest(PatientFields):
    doctor_id: str
    appointment_date: date
    time_slot: str

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        return _normalize_required(value, 'Doctor')

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        return _normalize_required(value, 'Time slot')


class SlotTemplateRequest(BaseModel):
    start_time: time
    end_time: time
    weekdays: list[int] | None = None


class WorkingWindowRequest(BaseModel):
    start_time: time
    end_time: time
    slot_duration_minutes: int | None = None
    weekdays: list[int] | None = None


class GenerateSlotsRequest(BaseModel):
    doctor_id: str
    start_date: date
    end_date: date
    templates: list[SlotTemplateRequest] | None = None
    window: WorkingWindowRequest | None = None

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        return _normalize_required(value, 'Doctor')

    @model_validator(mode='after')
    def validate_template_source(self) -> 'GenerateSlotsRequest':
        if not self.templates and self.window is None:
            raise ValueError('Provide slot templates or a working window.')
        return self


class CreateScheduleRequest(BaseModel):
    doctor_id: str
    start_time: time
    end_time: time
    weekdays: list[int] = [0, 1, 2, 3, 4]
    slot_duration_minutes: int | None = None

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        return _normalize_required(value, 'Doctor')


class GenerateFromScheduleRequest(BaseModel):
    start_date: date
    end_date: date


class StatusUpdateRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized


class SlotResponse(BaseModel):
    id: int
    doctor_id: str
    schedule_id: int | None = None
    slot_date: date
    start_time: time
    end_time: time
    time_slot: str
    status: str
    owner_patient_id: str | None = None
    owner_patient_name: str | None = None
    owner_appointment_id: int | None = None
    booked_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    appointment_code: str
    doctor_id: str
    appointment_date: date
    time_slot: str
    patient_id: str | None = None
    patient_name: str
    patient_phone: str
    patient_email: str | None = None
    symptoms: str | None = None
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    slot: SlotResponse
    appointment: AppointmentResponse


class GenerateSlotsResponse(BaseModel):
    created: int


class ScheduleResponse(BaseModel):
    id: int
    doctor_id: str
    weekdays: list[int]
    start_time: time
    end_time: time
    slot_duration_minutes: int

    @classmethod
    def from_schedule(cls, schedule) -> 'ScheduleResponse':
        return cls(
            id=schedule.id,
            doctor_id=schedule.doctor_id,
            weekdays=sorted(schedule.weekday_set),
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            slot_duration_minutes=schedule.slot_duration_minutes,
        )


class DeleteScheduleResponse(BaseModel):
    removed_slots: int


def validate_slot_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in SLOT_STATUSES:
        raise ValueError('Invalid slot status.')
    return normalized
