from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from app.auth import get_current_principal
from app.db import SessionLocal
from app.logging_config import setup_logging
from app.routers import admin, auth, dashboard, deliveries, demands, pendencies
from app.security.csrf import install_csrf_cookie_middleware
from app.security.headers import install_security_headers
from app.security.sessions import install_auth_session_middleware

setup_logging()

app = FastAPI(title='Almox Portal')
app.state.session_factory = SessionLocal

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(deliveries.router)
app.include_router(pendencies.router)
app.include_router(demands.router)
app.include_router(dashboard.router)
app.include_router(admin.router)


@app.get('/')
def root(request: Request):
    principal = get_current_principal(request)
    return {'username': principal.username, 'company_name': principal.company_name, 'role': principal.role.value}


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
