"""
Judge invitations.

Nothing is ever delivered: the invitation is rendered, the intended recipient
is logged, and the HTML comes back in the response as ``preview``.
"""
from __future__ import annotations

import logging
from html import escape

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Client-Info, Apikey",
}

PREVIEW_MESSAGE = "Invitation rendered; email delivery is not configured, nothing was sent"


class InvitationRequest(BaseModel):
    judgeName: str
    judgeEmail: str
    eventName: str
    accessToken: str
    dashboardUrl: str


def render_invitation(judge_name: str, event_name: str, access_token: str, dashboard_url: str) -> str:
    link = f"{dashboard_url}?token={access_token}"
    return f"""
    <html>
      <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #2563eb;">Judge Invitation - {escape(event_name)}</h2>
        <p>Dear {escape(judge_name)},</p>
        <p>You have been invited to judge the event: <strong>{escape(event_name)}</strong></p>
        <p>Please use the link below to access your judging dashboard:</p>
        <div style="background-color: #f3f4f6; padding: 20px; border-radius: 8px; margin: 20px 0;">
          <p style="margin: 0;"><strong>Dashboard Link:</strong></p>
          <a href="{escape(link)}"
             style="display: inline-block; margin-top: 10px; padding: 12px 24px; background-color: #2563eb; color: white; text-decoration: none; border-radius: 6px;">
            Access Judging Dashboard
          </a>
        </div>
        <p style="color: #6b7280; font-size: 14px;">
          Your access token: <code style="background-color: #f3f4f6; padding: 4px 8px; border-radius: 4px;">{escape(access_token)}</code>
        </p>
        <p>Best regards,<br/>Event Management Team</p>
      </body>
    </html>
    """


def preview_invitation(invite: InvitationRequest) -> str:
    html = render_invitation(invite.judgeName, invite.eventName, invite.accessToken, invite.dashboardUrl)
    logger.info(
        "Invitation preview only, not sent: to=%s event=%s dashboard=%s token=%s...",
        invite.judgeEmail,
        invite.eventName,
        invite.dashboardUrl,
        invite.accessToken[:4],
    )
    return html


@router.options("/send-judge-invitation")
def send_judge_invitation_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/send-judge-invitation")
async def send_judge_invitation(request: Request):
    try:
        payload = await request.json()
        invite = InvitationRequest(**payload)
        html = preview_invitation(invite)
    except Exception as e:
        logger.error("Error rendering invitation: %s", e)
        return JSONResponse(
            {"success": False, "error": str(e) or "Failed to render invitation"},
            status_code=500,
            headers=CORS_HEADERS,
        )

    return JSONResponse(
        {"success": True, "message": PREVIEW_MESSAGE, "preview": html},
        headers=CORS_HEADERS,
    )
