import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator

from capacita.core.errors import NotFoundError, PayloadValidationError
from capacita.core.records import find_index, generate_id, utc_timestamp
from capacita.storage import COURSES, CollectionStore, get_store

router = APIRouter(tags=['courses'])
logger = logging.getLogger(__name__)

DEFAULT_BUTTON_TEXT = 'Inscreva-se'


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {'http', 'https'} and bool(parsed.netloc)


class CourseRequest(BaseModel):
    title: str
    category: str
    description: str
    imageUrl: str
    courseUrl: str
    page: str
    downloadUrl: str | None = None
    buttonText: str | None = None

    @field_validator('title', 'category', 'description', 'imageUrl', 'courseUrl', 'page')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('All fields are required')
        return normalized

    @field_validator('imageUrl', 'courseUrl')
    @classmethod
    def validate_url(cls, value: str) -> str:
        if not is_valid_url(value):
            raise ValueError('Must be a valid http(s) URL')
        return value

    @field_validator('downloadUrl', 'buttonText')
    @classmethod
    def validate_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ReorderCoursesRequest(BaseModel):
    orderedIds: list[str]


def reorder_courses(courses: list[dict], ordered_ids: list[str]) -> list[dict]:
    courses_by_id = {course['id']: course for course in courses}
    if len(ordered_ids) != len(courses) or set(ordered_ids) != set(courses_by_id):
        raise PayloadValidationError('Incomplete list of courses provided')
    return [courses_by_id[course_id] for course_id in ordered_ids]


@router.get('')
def list_courses(store: CollectionStore = Depends(get_store)):
    return store.read(COURSES)


@router.get('/{page}')
def list_courses_by_page(page: str, store: CollectionStore = Depends(get_store)):
    return [course for course in store.read(COURSES) if course.get('page') == page]


@router.post('', status_code=status.HTTP_201_CREATED)
def create_course(data: CourseRequest, store: CollectionStore = Depends(get_store)):
    now = utc_timestamp()
    course = {
        'id': generate_id(),
        **data.model_dump(exclude={'buttonText'}),
        'buttonText': data.buttonText or DEFAULT_BUTTON_TEXT,
        'createdAt': now,
        'updatedAt': now,
        'ultimaAtualizacao': now,
    }

    with store.transaction(COURSES) as collections:
        collections[COURSES].append(course)

    logger.info('Created course %s on %s', course['id'], course['page'])
    return course


@router.put('/reorder')
def update_course_order(data: ReorderCoursesRequest, store: CollectionStore = Depends(get_store)):
    with store.transaction(COURSES) as collections:
        reordered = reorder_courses(collections[COURSES], data.orderedIds)
        collections[COURSES] = reordered

    logger.info('Reordered %d courses', len(reordered))
    return reordered


@router.put('/{course_id}')
def update_course(course_id: str, data: CourseRequest, store: CollectionStore = Depends(get_store)):
    with store.transaction(COURSES) as collections:
        courses = collections[COURSES]
        index = find_index(courses, course_id)
        if index is None:
            raise NotFoundError('Course not found')

        now = utc_timestamp()
        current = courses[index]
        updated = {
            **current,
            **data.model_dump(exclude={'buttonText'}),
            'id': course_id,
            'buttonText': data.buttonText or current.get('buttonText') or DEFAULT_BUTTON_TEXT,
            'updatedAt': now,
            'ultimaAtualizacao': now,
        }
        courses[index] = updated

    logger.info('Updated course %s', course_id)
    return updated


@router.delete('/{course_id}')
def delete_course(course_id: str, store: CollectionStore = Depends(get_store)):
    with store.transaction(COURSES) as collections:
        courses = collections[COURSES]
        index = find_index(courses, course_id)
        if index is None:
            raise NotFoundError('Course not found')
        deleted = courses.pop(index)

    logger.info('Deleted course %s', course_id)
    return {'message': 'Course deleted successfully', 'course': deleted}
