# app/main.py
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app import config, database, events, fees, ledger, locks, orders, schemas
from app.database import get_db
from app.errors import PaymentError
from app.gateway import PaymentGateway, get_gateway

# logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("payment-service")


# Startup: initialize DB and start the consumer that listens to enrollment events
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing DB and starting enrollment-event consumer...")
    database.init_db(config.DATABASE_URL)
    if config.ENROLLMENT_CONSUMER_ENABLED:
        events.start_consumer(config.DATABASE_URL, config.RABBITMQ_URL, config.PAYMENT_QUEUE)
    logger.info("Startup complete.")
    yield


app = FastAPI(title="Course Payment Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(_: Request, exc: PaymentError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "code": "internal_error", "detail": "An unexpected error occurred. Please try again."},
    )


# Root and health endpoints
@app.get("/")
def root():
    return {
        "service": "Course Payment Service",
        "status": "running",
        "endpoints": ["/student-course-fees", "/payment-lock", "/razorpay", "/payments", "/docs"],
    }


@app.get("/health")
def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.exception("Health check failed: %s", e)
        raise HTTPException(status_code=503, detail="Database unreachable")
    return {"status": "ok"}


# Fee terms
@app.post("/student-course-fees", response_model=schemas.CourseFeeOut, status_code=201)
def store_course_fee(fee_in: schemas.CourseFeeIn, db: Session = Depends(get_db)):
    fee = fees.upsert_course_fee(db, fee_in.model_dump())
    return fees.to_fee_payload(fee)


@app.get("/student-course-fees/{registration_number}", response_model=schemas.CourseFeeOut)
def get_course_fees(registration_number: str, db: Session = Depends(get_db)):
    return fees.to_fee_payload(fees.get_course_fee(db, registration_number))


@app.get("/student-course-fees/{registration_number}/{enrollment_id}", response_model=schemas.CourseFeeOut)
def get_course_fees_by_enrollment(registration_number: str, enrollment_id: str, db: Session = Depends(get_db)):
    return fees.to_fee_payload(fees.get_course_fee(db, registration_number, enrollment_id))


# Payment type lock
@app.get("/payment-lock/{registration_number}", response_model=schemas.PaymentLockStatus)
def get_payment_lock(registration_number: str, enrollment_id: Optional[str] = Query(None), db: Session = Depends(get_db)):
    if enrollment_id:
        lock = locks.get_lock(db, enrollment_id)
    else:
        lock = locks.find_registration_lock(db, registration_number)
    if lock is None or lock.registration_number != registration_number:
        return {"success": False, "data": None}
    return {"success": True, "data": schemas.PaymentLockOut.model_validate(lock)}


@app.post("/payment-lock", response_model=schemas.PaymentLockStatus)
def lock_payment_type(lock_in: schemas.PaymentLockIn, db: Session = Depends(get_db)):
    lock = locks.confirm_lock(db, lock_in.register_number, lock_in.enrollment_id, lock_in.payment_type)
    return {"success": True, "data": schemas.PaymentLockOut.model_validate(lock)}


# Gateway round trip
@app.post("/razorpay/create-order", response_model=schemas.CreateOrderOut, status_code=201)
def create_razorpay_order(
    order_in: schemas.CreateOrderIn,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    _, gateway_order = orders.create_order(db, gateway, order_in)
    return {
        "success": True,
        "order": {
            "id": gateway_order.order_id,
            "amount": gateway_order.amount_subunits,
            "currency": gateway_order.currency,
        },
        "key": gateway_order.checkout_key,
    }


@app.post("/razorpay/verify", response_model=schemas.VerifyOut)
def verify_razorpay_payment(
    verify_in: schemas.VerifyIn,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    txn = ledger.verify(db, gateway, verify_in.razorpay_order_id, verify_in.razorpay_payment_id, verify_in.razorpay_signature)
    return {"success": True, "transaction": schemas.TransactionOut.model_validate(txn)}


@app.get("/razorpay/status/{payment_id}", response_model=schemas.PaymentStatusOut)
def get_razorpay_status(payment_id: str, db: Session = Depends(get_db)):
    txn = ledger.get_transaction_by_payment(db, payment_id)
    if txn is None:
        return {"success": True, "verified": False, "transaction": None}
    return {"success": True, "verified": True, "transaction": schemas.TransactionOut.model_validate(txn)}


# Ledger
@app.get("/payments", response_model=schemas.TransactionsOut)
def list_payments(
    registration_number: Optional[str] = Query(None),
    enrollment_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    txns = ledger.list_transactions(db, registration_number, enrollment_id)
    return {"transactions": [schemas.TransactionOut.model_validate(t) for t in txns]}


@app.get("/payments/order/{order_id}", response_model=schemas.TransactionOut)
def get_payment_by_order(order_id: str, db: Session = Depends(get_db)):
    txn = ledger.get_transaction(db, order_id)
    if not txn:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return schemas.TransactionOut.model_validate(txn)
