import sys

import metsi_sim as ms

db_path = sys.argv[1] if len(sys.argv) > 1 else "outputs/thinning_demo/trajectories.db"
print(f"Inspecting {db_path}")

results = ms.load_trajectory_results(db_path)
meta = results["run_meta"]
nodes = results["nodes"]
errors = results["errors"]

print("\n--- Runs ---")
print(meta[["run_id", "stand_id", "horizon", "status", "n_nodes"]].to_string(index=False))

print("\n--- Node status per stand ---")
print(nodes.groupby(["stand_id", "status"]).size().unstack(fill_value=0))

if errors.empty:
    print("\nNo stand-level errors.")
else:
    print("\n--- Errors ---")
    print(errors[["stand_id", "error_type", "error_msg"]].to_string(index=False))
