# backend/tutorbook/routes/v1/lessons.py
"""
Lesson routes - API v1

Endpoints:
    POST /lessons                          → Book a lesson (pending until payment confirms)
    GET /lessons/{lesson_id}               → Lesson details for a participant
    POST /lessons/{lesson_id}/cancel       → Cancel (24h notice)
    POST /lessons/{lesson_id}/reschedule   → Reschedule (24h notice)
    POST /lessons/{lesson_id}/complete     → Tutor marks the lesson taught
    GET /lessons/{lesson_id}/permissions   → Whether cancel/reschedule is still possible
    GET /tutors/{tutor_id}/booked-slots    → Start times already taken
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ...auth import get_current_user
from ...core.timezone_utils import ensure_utc, utc_now
from ...models.user import User
from ...schemas.lesson import (
    BookedSlotsResponse,
    BookLessonResponse,
    LessonCancelRequest,
    LessonCompleteRequest,
    LessonCreate,
    LessonPermissionsResponse,
    LessonRescheduleRequest,
    LessonResponse,
)
from ...services.booking_service import BookingService
from ...services.dependencies import get_booking_service

router = APIRouter(tags=["lessons"])
tutors_router = APIRouter(tags=["lessons"])


@router.post("", response_model=BookLessonResponse, status_code=status.HTTP_201_CREATED)
async def book_lesson(
    payload: LessonCreate,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookLessonResponse:
    booked = await asyncio.to_thread(booking_service.book_lesson, current_user, payload)
    return BookLessonResponse(
        lesson=LessonResponse.model_validate(booked.lesson),
        client_secret=booked.hold.client_secret,
    )


@router.get("/{lesson_id}", response_model=LessonResponse)
async def get_lesson(
    lesson_id: str,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> LessonResponse:
    lesson = await asyncio.to_thread(booking_service.get_lesson_for_user, current_user, lesson_id)
    return LessonResponse.model_validate(lesson)


@router.post("/{lesson_id}/cancel", response_model=LessonResponse)
async def cancel_lesson(
    lesson_id: str,
    payload: LessonCancelRequest,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> LessonResponse:
    lesson = await asyncio.to_thread(
        booking_service.cancel_lesson, current_user, lesson_id, payload.reason
    )
    return LessonResponse.model_validate(lesson)


@router.post("/{lesson_id}/reschedule", response_model=LessonResponse)
async def reschedule_lesson(
    lesson_id: str,
    payload: LessonRescheduleRequest,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> LessonResponse:
    lesson = await asyncio.to_thread(
        booking_service.reschedule_lesson, current_user, lesson_id, payload.new_date
    )
    return LessonResponse.model_validate(lesson)


@router.post("/{lesson_id}/complete", response_model=LessonResponse)
async def complete_lesson(
    lesson_id: str,
    payload: LessonCompleteRequest,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> LessonResponse:
    lesson = await asyncio.to_thread(
        booking_service.complete_lesson, current_user, lesson_id, payload.notes
    )
    return LessonResponse.model_validate(lesson)


@router.get("/{lesson_id}/permissions", response_model=LessonPermissionsResponse)
async def get_lesson_permissions(
    lesson_id: str,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> LessonPermissionsResponse:
    check, is_participant = await asyncio.to_thread(
        booking_service.get_modification_permissions, current_user, lesson_id
    )
    allowed = check.allowed and is_participant
    return LessonPermissionsResponse(
        can_cancel=allowed,
        can_reschedule=allowed,
        hours_until_start=round(check.hours_until_start, 2),
        reason=check.reason,
    )


@tutors_router.get("/{tutor_id}/booked-slots", response_model=BookedSlotsResponse)
async def get_booked_slots(
    tutor_id: str,
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookedSlotsResponse:
    range_start = ensure_utc(start) or utc_now()
    range_end = ensure_utc(end) or range_start + timedelta(days=30)
    slots = await asyncio.to_thread(
        booking_service.get_booked_slots, tutor_id, range_start, range_end
    )
    return BookedSlotsResponse(tutor_id=tutor_id, slots=slots)
