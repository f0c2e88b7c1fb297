import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from capacita.core.config import Settings, configure_logging, load_settings, validate_runtime_config
from capacita.core.errors import PersistenceError, format_validation_errors
from capacita.core.records import utc_timestamp
from capacita.routes import auth_routes, course_routes, people_routes, user_routes
from capacita.storage import CollectionStore, build_store

logger = logging.getLogger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    content = {'error': exc.detail}
    details = getattr(exc, 'details', None)
    if details:
        content['details'] = details
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, 'headers', None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={'error': 'Dados inválidos', 'details': format_validation_errors(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unhandled error on %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'error': 'Erro interno do servidor'},
    )


def create_app(settings: Settings | None = None, store: CollectionStore | None = None) -> FastAPI:
    settings = settings or load_settings()
    validate_runtime_config(settings)
    configure_logging(settings.log_level)

    app = FastAPI(title='Capacita API')
    app.state.settings = settings
    app.state.store = store or build_store(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.on_event('startup')
    def initialize_store() -> None:
        try:
            app.state.store.initialize()
        except (OSError, PersistenceError):
            logger.exception('Store initialization failed. Check STORAGE_BACKEND, DATA_DIR and DATABASE_URL.')

    @app.get('/api/health')
    def health():
        return {'status': 'OK', 'timestamp': utc_timestamp()}

    app.include_router(course_routes.router, prefix='/api/courses')
    app.include_router(people_routes.router, prefix='/api')
    app.include_router(auth_routes.router, prefix='/api')
    app.include_router(user_routes.router, prefix='/api')

    logger.info('Capacita API configured with %s storage', settings.storage_backend)
    return app


app = create_app()
