# Parameter validation
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    arguments: Optional[BaseModel] = None


class ToolParameterValidator:
    @staticmethod
    def validate_tool_call(input_model: Type[BaseModel], parameters: Dict[str, Any]) -> ValidationResult:
        if not isinstance(parameters, dict):
            return ValidationResult(is_valid=False, errors=["Arguments must be a JSON object"])

        try:
            arguments = input_model.model_validate(parameters)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc']) or 'arguments'}: {error['msg']}"
                for error in e.errors()
            ]
            return ValidationResult(is_valid=False, errors=[f"Schema validation failed: {'; '.join(errors)}"])

        return ValidationResult(is_valid=True, arguments=arguments)

    @staticmethod
    def parameters_schema(input_model: Type[BaseModel]) -> Dict[str, Any]:
        """JSON schema of a capability's input, as sent to the model"""
        schema = input_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema
