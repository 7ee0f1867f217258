# hirehub/api/v1/chat.py
"""
HTTP read/delete surface for conversations. Realtime writes (send, edit,
typing) go over /ws; deletes are broadcast to the participants' sockets.
"""

from fastapi import APIRouter, Depends, Query

from hirehub.api.deps import get_chat, get_current_principal, get_realtime
from hirehub.core.security import Principal

router = APIRouter()


@router.get("/chat/conversations")
async def list_conversations(principal: Principal = Depends(get_current_principal), chat=Depends(get_chat)):
    conversations = await chat.get_user_conversations(principal.user_id)
    return {"success": True, "conversations": [c.model_dump(mode="json") for c in conversations]}


@router.get("/chat/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, principal: Principal = Depends(get_current_principal),
                           chat=Depends(get_chat)):
    details = await chat.get_conversation_details(conversation_id, principal.user_id)
    return {"success": True, "conversation": details.model_dump(mode="json")}


@router.get("/chat/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    limit: int = Query(50),
    offset: int = Query(0),
    principal: Principal = Depends(get_current_principal),
    chat=Depends(get_chat),
):
    messages = await chat.get_messages(conversation_id, principal.user_id, limit=limit, offset=offset)
    return {
        "success": True,
        "messages": [m.model_dump(mode="json") for m in messages],
        "limit": limit,
        "offset": offset,
    }


@router.delete("/chat/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    principal: Principal = Depends(get_current_principal),
    chat=Depends(get_chat),
    realtime=Depends(get_realtime),
):
    result = await chat.delete_conversation(conversation_id, principal.user_id)
    for user_id in result["participants"]:
        realtime.send_to_user(user_id, "chat:conversation_deleted", {"conversationId": conversation_id})
    return {"success": True, "conversationId": conversation_id}
