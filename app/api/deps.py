from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.core.security import decode_access_token
from app.database import get_db
from app.services.gateway import CheckoutGateway
from app.services.notifications import EmailNotifier
from app.services.registration_store import RegistrationStore

bearer_scheme = HTTPBearer()


def get_current_user(credentials : HTTPAuthorizationCredentials = Depends(bearer_scheme)):
    token = credentials.credentials
    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid or expired token',
            headers={'WWW-Authenticate': 'Bearer'}
            )

    email = payload.get('sub')
    role = payload.get('role')
    id = payload.get('user_id')

    if not email:
        raise HTTPException(status_code=401, detail='Token payload invalid')

    return{'email':email, 'role': role, 'id': id}







def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user['role'] not in ('admin', 'super_admin'):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Admin access required')
    return current_user






def get_store(db: Session = Depends(get_db)) -> RegistrationStore:
    return RegistrationStore(db)


def get_gateway() -> CheckoutGateway:
    return CheckoutGateway()


def get_notifier() -> EmailNotifier:
    return EmailNotifier()
