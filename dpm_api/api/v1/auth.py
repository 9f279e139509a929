from fastapi import APIRouter, BackgroundTasks, Depends, Request

from dpm_api.api.deps import get_auth_context, get_auth_service, require_roles
from dpm_api.services.auth import AuthContext, AuthService
from dpm_api.schemas.auth import (
    RegisterIn, LoginIn, LoginOut, Requires2FAOut, Verify2FAIn, CodeIn, RefreshIn,
    ForgotPasswordIn, ResetPasswordIn, ChangePasswordIn, Enable2FAIn, Disable2FAIn,
    TokensOut, UserOut, TwoFASetupOut, SessionOut, MessageOut,
)

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "Si existe una cuenta con ese email, enviamos un enlace de recuperación"

# ---------- público ----------
@router.post("/login", response_model=LoginOut | Requires2FAOut)
async def login(payload: LoginIn, request: Request, auth: AuthService = Depends(get_auth_service)):
    result = await auth.login(
        payload.email,
        payload.password,
        clinic_id=payload.clinic_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if result.requires_2fa:
        return Requires2FAOut(user_id=result.user.id)
    return LoginOut(
        user=UserOut.model_validate(result.user),
        tokens=TokensOut.model_validate(result.tokens),
    )

@router.post("/2fa/verify", response_model=TokensOut)
async def verify_2fa(payload: Verify2FAIn, auth: AuthService = Depends(get_auth_service)):
    tokens = await auth.verify_2fa(payload.user_id, payload.code)
    return TokensOut.model_validate(tokens)

@router.post("/refresh", response_model=TokensOut)
async def refresh(payload: RefreshIn, auth: AuthService = Depends(get_auth_service)):
    tokens = await auth.refresh(payload.refresh_token)
    return TokensOut.model_validate(tokens)

@router.post("/forgot-password", response_model=MessageOut)
async def forgot_password(
    payload: ForgotPasswordIn,
    background_tasks: BackgroundTasks,
    auth: AuthService = Depends(get_auth_service),
):
    # misma respuesta (y mismo tiempo) exista o no el email: el envío va en segundo plano
    delivery = await auth.forgot_password(payload.email)
    if delivery is not None:
        background_tasks.add_task(delivery.send)
    return MessageOut(message=FORGOT_PASSWORD_MESSAGE)

@router.post("/reset-password", response_model=MessageOut)
async def reset_password(payload: ResetPasswordIn, auth: AuthService = Depends(get_auth_service)):
    await auth.reset_password(payload.token, payload.password)
    return MessageOut(message="Contraseña restablecida")

# ---------- protegido ----------
@router.post("/register", response_model=UserOut, status_code=201)
async def register(
    payload: RegisterIn,
    ctx: AuthContext = Depends(require_roles("ADMIN")),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.register(
        clinic_id=payload.clinic_id,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        role=payload.role.value,
    )
    return UserOut.model_validate(user)

@router.get("/me", response_model=UserOut)
async def me(ctx: AuthContext = Depends(get_auth_context), auth: AuthService = Depends(get_auth_service)):
    return UserOut.model_validate(await auth.me(ctx.user_id))

@router.post("/logout", response_model=MessageOut)
async def logout(ctx: AuthContext = Depends(get_auth_context), auth: AuthService = Depends(get_auth_service)):
    await auth.logout(ctx)
    return MessageOut(message="Sesión cerrada")

@router.post("/logout-all", response_model=MessageOut)
async def logout_all(ctx: AuthContext = Depends(get_auth_context), auth: AuthService = Depends(get_auth_service)):
    await auth.logout_all(ctx.user_id)
    return MessageOut(message="Se cerraron todas las sesiones")

@router.post("/change-password", response_model=MessageOut)
async def change_password(
    payload: ChangePasswordIn,
    ctx: AuthContext = Depends(get_auth_context),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.change_password(ctx.user_id, payload.current_password, payload.new_password)
    return MessageOut(message="Contraseña cambiada. Iniciá sesión de nuevo")

# ---------- 2FA FLOW ----------
@router.post("/2fa/enable", response_model=TwoFASetupOut)
async def enable_2fa(
    payload: Enable2FAIn,
    ctx: AuthContext = Depends(get_auth_context),
    auth: AuthService = Depends(get_auth_service),
):
    start = await auth.enable_2fa(ctx.user_id, payload.password)
    return TwoFASetupOut(secret=start.secret, otpauth_url=start.otpauth_url, qr_base64_png=start.qr_base64_png)

@router.post("/2fa/confirm", response_model=MessageOut)
async def confirm_2fa(
    payload: CodeIn,
    ctx: AuthContext = Depends(get_auth_context),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.confirm_2fa(ctx.user_id, payload.code)
    return MessageOut(message="2FA habilitado")

@router.post("/2fa/disable", response_model=MessageOut)
async def disable_2fa(
    payload: Disable2FAIn,
    ctx: AuthContext = Depends(get_auth_context),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.disable_2fa(ctx.user_id, payload.password, payload.code)
    return MessageOut(message="2FA deshabilitado")

# ---------- sesiones ----------
@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(ctx: AuthContext = Depends(get_auth_context), auth: AuthService = Depends(get_auth_service)):
    return [SessionOut.model_validate(s) for s in await auth.list_sessions(ctx)]

@router.delete("/sessions/{id}", response_model=MessageOut)
async def revoke_session(
    id: str,
    ctx: AuthContext = Depends(get_auth_context),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.revoke_session(ctx.user_id, id)
    return MessageOut(message="Sesión revocada")
