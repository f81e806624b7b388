"""
Universal Capabilities

Tools every entity may call without declaring them.
"""

from .ask_human import AskHuman
from .think import Think
from .capabilities import CreateCapability, AddCapability, RemoveCapability, ListCapabilities
from .authoring import (
    CreatePrimitive,
    AddPrimitive,
    ModifyPrimitive,
    DeletePrimitive,
    ListPrimitives,
    VerifyPrimitive,
    RequestPrimitive,
)
from .prompt import ModifyPrompt
from .env_data import StoreEnvData, GetEnvData, ListEnvData, UpdateEnvData, DeleteEnvData

UNIVERSAL_PRIMITIVES = [
    AskHuman,
    Think,
    CreateCapability,
    AddCapability,
    RemoveCapability,
    ListCapabilities,
    CreatePrimitive,
    AddPrimitive,
    ModifyPrimitive,
    DeletePrimitive,
    ListPrimitives,
    VerifyPrimitive,
    RequestPrimitive,
    ModifyPrompt,
    StoreEnvData,
    GetEnvData,
    ListEnvData,
    UpdateEnvData,
    DeleteEnvData,
]

UNIVERSAL_CAPABILITIES = [cls.name for cls in UNIVERSAL_PRIMITIVES]

__all__ = [
    "AskHuman",
    "Think",
    "CreateCapability",
    "AddCapability",
    "RemoveCapability",
    "ListCapabilities",
    "CreatePrimitive",
    "AddPrimitive",
    "ModifyPrimitive",
    "DeletePrimitive",
    "ListPrimitives",
    "VerifyPrimitive",
    "RequestPrimitive",
    "ModifyPrompt",
    "StoreEnvData",
    "GetEnvData",
    "ListEnvData",
    "UpdateEnvData",
    "DeleteEnvData",
    "UNIVERSAL_PRIMITIVES",
    "UNIVERSAL_CAPABILITIES",
]
