"""
Example: disentangle a 1D chain with a frozen energy window.

The chain has more bands than Wannier functions. Bands below the frozen
window maximum are kept exactly, the rest of the subspace is optimized for
minimal spread.

Usage:
    python example_disentangle.py [--nk 8] [--norb 6] [--nwann 3] [--froz-max -1.0] [--random]

Optionally saves the optimized gauge and the run parameters:
    python example_disentangle.py --out chain_gauge.npz
"""
import argparse
import numpy as np

from wannier_disentangle import (
    DisentangleParameters, chain_model, set_frozen_win, disentangle,
)


def parse_args():
    p = argparse.ArgumentParser()
    p.add_argument("--nk", type=int, default=8, help="Number of k-points along the chain")
    p.add_argument("--norb", type=int, default=6, help="Orbitals (= bands) per cell")
    p.add_argument("--nwann", type=int, default=3, help="Number of Wannier functions")
    p.add_argument("--froz-max", type=float, default=None,
                   help="Top of the frozen window (default: just below band nwann at every k)")
    p.add_argument("--seed", type=int, default=0, help="Seed of the random chain")
    p.add_argument("--random", action="store_true", help="Start from a random gauge")
    p.add_argument("--max-iter", type=int, default=500)
    p.add_argument("--trace", action="store_true", help="Print every L-BFGS iteration")
    p.add_argument("--out", default=None, help="Output npz file for the optimized gauge")
    return p.parse_args()


def main():
    args = parse_args()

    print("=" * 70)
    print("wannier_disentangle: 1D chain example")
    print("=" * 70)

    model = chain_model(n_kpts=args.nk, n_orb=args.norb, n_wann=args.nwann, seed=args.seed)
    froz_max = args.froz_max
    if froz_max is None:
        froz_max = model.E[:, model.n_wann - 1].min() - 1e-3
    frozen = set_frozen_win(model.E, froz_max, n_wann=model.n_wann, degen=True)
    model = model.with_frozen(frozen)
    print(f"Frozen bands per k: {frozen.sum(axis=1).tolist()}")
    print(f"B1 condition satisfied: {model.bvectors.check_b1()}")

    params = DisentangleParameters(
        max_iter=args.max_iter,
        random_gauge=args.random,
        seed=args.seed,
        show_trace=args.trace,
    )
    res = disentangle(model, params)

    print(f"\nΩ: {res.omega_initial:.6f} -> {res.omega_final:.6f}  ({res.message})")

    if args.out is not None:
        np.savez(args.out, A=res.A, frozen=frozen, E=model.E,
                 omega_initial=res.omega_initial, omega_final=res.omega_final)
        params.to_json(args.out.rsplit(".", 1)[0] + "_params.json")
        print(f"Saved gauge to {args.out}")


if __name__ == "__main__":
    main()
