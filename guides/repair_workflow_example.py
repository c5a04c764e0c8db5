"""Example driving the repair workflow end to end with the in-memory backend."""

import asyncio
from pathlib import Path

import yaml

from caseflow import DefinitionService, WorkflowEngine
from caseflow.persistence import InMemoryWorkflowRepository


async def main():
    repository = InMemoryWorkflowRepository()
    definitions = DefinitionService(repository)
    engine = WorkflowEngine(repository)

    payload = yaml.safe_load(Path(__file__).with_name("repair_workflow.yaml").read_text())
    definition = await definitions.create_definition(payload, created_by="admin")
    await definitions.activate_definition(definition.id, activated_by="admin")

    instance = await engine.start(
        definition.id, "CASE-1001", context={"serialNumber": "SN-42"}, started_by="front_desk"
    )
    print("Active:", instance.current_steps)

    for step_name, data in (
        ("intake", {"deviceStatus": "broken"}),
        ("diagnosis", {"estimatedCost": 120}),
        ("repair", {"deviceStatus": "working"}),
    ):
        step = instance.step_instance_by_name(step_name)
        instance = await engine.execute_step(instance.id, step.id, data=data, executed_by="tech")
        print(f"Completed {step_name}; active: {instance.current_steps}")

    print("Final status:", instance.status.value)
    for event in await repository.list_events(instance.id):
        print(f"  {event.event_type}: {event.payload}")

    await engine.close()


if __name__ == "__main__":
    asyncio.run(main())
