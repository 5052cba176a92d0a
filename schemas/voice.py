from pydantic import BaseModel
from typing import Any, Optional

# Field names are the wire contract with the web client and stay camelCase.


class Envelope(BaseModel):
    event: str
    data: Optional[Any] = None

class JoinVoiceRoomRequest(BaseModel):
    meetingId: str
    peerId: str
    userId: Optional[str] = None
    displayName: Optional[str] = None

class LeaveVoiceRoomRequest(BaseModel):
    meetingId: str
    peerId: str

class EndMeetingRequest(BaseModel):
    meetingId: str

class WebRTCOfferRequest(BaseModel):
    targetSocketId: str
    offer: Any = None

class WebRTCAnswerRequest(BaseModel):
    targetSocketId: str
    answer: Any = None

class IceCandidateRequest(BaseModel):
    targetSocketId: str
    candidate: Any = None

class MediaStateChangeRequest(BaseModel):
    roomId: str
    isAudioEnabled: Optional[bool] = None
    isVideoEnabled: Optional[bool] = None

class Participant(BaseModel):
    socketId: str
    peerId: str
    displayName: str

class IceServer(BaseModel):
    urls: str

class IceServersResponse(BaseModel):
    iceServers: list[IceServer]
