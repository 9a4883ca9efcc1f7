from fastapi import APIRouter, BackgroundTasks, Depends
from darktides.application.schemas import ContactRequest
from .deps import get_notifier

router = APIRouter(tags=["contact"])

@router.post("/contact", status_code=202)
def contact(payload: ContactRequest, background_tasks: BackgroundTasks, notifier=Depends(get_notifier)):
    background_tasks.add_task(
        notifier.send_contact_message,
        payload.name, payload.email, payload.subject, payload.message,
    )
    return {"success": True, "message": "Message sent successfully"}
