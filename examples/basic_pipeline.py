from cigraph import JobSpec, Pipeline, PrintHook, RunContext, Step, internal_image_link

# Minimal, runnable everywhere example: two local steps wired by a link.

SOURCE = internal_image_link("src")


class Checkout(Step):
    name = "checkout"

    def run(self, ctx: RunContext) -> None:
        print("checking out sources")

    def requires(self):
        return []

    def creates(self):
        return [SOURCE]

    def provides(self):
        return {"SOURCE_DIR": lambda: "/tmp/src"}


class Unit(Step):
    name = "unit"

    def run(self, ctx: RunContext) -> None:
        print(f"testing {ctx.parameters.get('SOURCE_DIR')}")

    def requires(self):
        return [SOURCE]

    def creates(self):
        return []


if __name__ == "__main__":
    # checkout is only pulled in because unit needs what it creates
    pipeline = Pipeline([Unit()], JobSpec(namespace="local"), implicit=[Checkout()], hook=PrintHook())
    result = pipeline.execute()
    raise SystemExit(0 if result.succeeded else 1)
