import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .db import SessionLocal, init_schema
from .emailer import Mailer, get_mailer
from .models import Email, EmailTemplate
from .schemas import EmailOut, OrderConfirmationIn
from .templates import ORDER_CONFIRMATION, format_money, items_html, items_text, render_default
from shared.clock import Clock, get_clock

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)
logging.basicConfig(level=logging.INFO)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_schema()
    yield


app = FastAPI(title="email-service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(
            {"success": False, "message": "Validation failed", "errors": exc.errors()}
        ),
    )


def order_variables(payload: OrderConfirmationIn, now) -> dict:
    items = [i.model_dump() for i in payload.order_items]
    return {
        "customer_name": payload.customer_name,
        "order_number": payload.order_number,
        "order_total": format_money(payload.order_total),
        "order_date": f"{now:%B} {now.day}, {now:%Y}",
        "shipping_address": payload.shipping_address or "N/A",
        "order_items_text": items_text(items),
        "order_items_html": items_html(items),
    }


@app.post("/order-confirmation", status_code=201)
def send_order_confirmation(
    payload: OrderConfirmationIn,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    variables = order_variables(payload, now)

    template = EmailTemplate.active_by_name(db, ORDER_CONFIRMATION)
    if template is not None:
        missing = template.validate_variables(variables)
        if missing:
            logger.warning("Template %s missing variables=%s", template.name, missing)
        rendered = template.render(variables)
    else:
        rendered = render_default(ORDER_CONFIRMATION, variables)

    email = Email(
        recipient_email=payload.customer_email,
        recipient_name=payload.customer_name,
        subject=rendered["subject"],
        body_html=rendered["body_html"],
        body_text=rendered["body_text"],
        type=ORDER_CONFIRMATION,
        reference_type="order",
        reference_id=payload.order_id,
        status="sending",
        metadata_={
            "order_number": payload.order_number,
            "order_total": str(payload.order_total),
            "items_count": len(payload.order_items),
        },
        created_at=now,
        updated_at=now,
    )
    db.add(email)
    db.commit()
    db.refresh(email)

    try:
        provider_response = mailer(
            to_email=payload.customer_email,
            to_name=payload.customer_name,
            subject=email.subject,
            html_body=email.body_html,
            text_body=email.body_text,
        )
    except Exception as e:
        email.mark_failed(str(e), clock())
        db.commit()
        logger.error(
            "Order confirmation email failed order_id=%s order_number=%s recipient=%s error=%s",
            payload.order_id, payload.order_number, payload.customer_email, repr(e),
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Failed to send order confirmation email",
                "error": str(e),
            },
        )

    email.mark_sent(clock())
    email.email_provider_response = provider_response
    db.commit()
    db.refresh(email)

    logger.info(
        "Order confirmation email sent email_id=%s order_id=%s order_number=%s recipient=%s",
        email.id, payload.order_id, payload.order_number, payload.customer_email,
    )
    return {
        "success": True,
        "message": "Order confirmation email sent successfully",
        "data": {
            "email_id": email.id,
            "status": email.status,
            "recipient": email.recipient_email,
            "order_number": payload.order_number,
        },
    }


@app.get("/emails/retryable")
def retryable_emails(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    rows = Email.retryable(db, clock())
    return {
        "success": True,
        "data": [EmailOut.model_validate(r).model_dump(mode="json") for r in rows],
    }


@app.get("/health")
def health(now: Clock = Depends(get_clock)):
    return {"status": "healthy", "service": "email-service", "timestamp": now().isoformat()}
